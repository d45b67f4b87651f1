from .batch import JsonBatch as JsonBatch
from .batch import ODataBatch as ODataBatch
from .batch import SequentialBatch as SequentialBatch
from .caching import CachingOptions as CachingOptions
from .caching import CachingParserWrapper as CachingParserWrapper
from .config import RuntimeConfig as RuntimeConfig
from .config import get_default_config as get_default_config
from .context import RequestContext as RequestContext
from .context import Verb as Verb
from .exceptions import AlreadyInBatchException as AlreadyInBatchException
from .exceptions import ProcessHttpClientResponseException as ProcessHttpClientResponseException
from .logging import setup_logging as setup_logging
from .parsers import BlobParser as BlobParser
from .parsers import BufferParser as BufferParser
from .parsers import JSONParser as JSONParser
from .parsers import ODataDefaultParser as ODataDefaultParser
from .parsers import ODataParserBase as ODataParserBase
from .parsers import TextParser as TextParser
from .pipeline import get_default_pipeline as get_default_pipeline
from .pipeline import pipe as pipe
from .queryable import ODataQueryable as ODataQueryable

__all__ = [
    "ODataQueryable",
    "ODataBatch",
    "JsonBatch",
    "SequentialBatch",
    "RequestContext",
    "Verb",
    "RuntimeConfig",
    "get_default_config",
    "CachingOptions",
    "CachingParserWrapper",
    "ODataParserBase",
    "ODataDefaultParser",
    "TextParser",
    "BlobParser",
    "BufferParser",
    "JSONParser",
    "pipe",
    "get_default_pipeline",
    "ProcessHttpClientResponseException",
    "AlreadyInBatchException",
    "setup_logging",
]
