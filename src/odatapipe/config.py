"""
Runtime configuration passed explicitly to queryables and request contexts.
"""

import os
import typing as t
from functools import cached_property
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from odatapipe.storage import CACHE_PATH_ENV_VAR, ClientStorage, StoreName

ENV_PREFIX = "ODATAPIPE_"


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, ignored_types=(cached_property,))

    default_caching_store: StoreName = Field(
        default="session",
        description="store used when a request names none: 'local' (sqlite) or 'session' (memory)",
    )
    default_caching_timeout_seconds: int = Field(
        default=60,
        ge=0,
        description="lifetime of a cached result when the request does not set an expiration",
    )
    global_cache_disable: bool = Field(
        default=False,
        description="when set, using_caching() is ignored everywhere",
    )
    enable_local_store: bool = Field(default=True, description="allow the sqlite-backed store")
    enable_session_store: bool = Field(default=True, description="allow the in-memory store")
    cache_path: Path | None = Field(
        default=None,
        description=f"sqlite file for the local store, defaults to ${CACHE_PATH_ENV_VAR}",
    )

    @cached_property
    def storage(self) -> ClientStorage:
        """
        Stores shared by every request built with this configuration.

        Returns
        -------
        ClientStorage
            Local and session stores, honoring the enable flags.
        """
        return ClientStorage(
            local_enabled=self.enable_local_store,
            session_enabled=self.enable_session_store,
            cache_path=self.cache_path,
        )

    @classmethod
    def from_env(
        cls,
        *,
        dotenv_path: str | os.PathLike | None = None,
        **overrides: t.Any,
    ) -> "RuntimeConfig":
        """
        Build a configuration from ``ODATAPIPE_*`` environment variables.

        Parameters
        ----------
        dotenv_path : str | os.PathLike | None, optional
            ``.env`` file to load first. The default lookup is used when omitted.
        **overrides : typing.Any
            Field values taking precedence over the environment.

        Returns
        -------
        RuntimeConfig
            Validated configuration.
        """
        load_dotenv(dotenv_path=dotenv_path)
        values: dict[str, t.Any] = {}
        for field_name in cls.model_fields:
            env_value = os.getenv(f"{ENV_PREFIX}{field_name.upper()}")
            if env_value is not None and env_value != "":
                values[field_name] = env_value
        values.update(overrides)
        return cls.model_validate(values)


_default_config: RuntimeConfig | None = None


def get_default_config() -> RuntimeConfig:
    """
    Return the configuration used when a queryable or context is given none.

    Built from the environment on first use, then shared, so every request
    relying on the defaults reads and writes the same cache stores.

    Returns
    -------
    RuntimeConfig
        Process-wide default configuration.
    """
    global _default_config
    if _default_config is None:
        _default_config = RuntimeConfig.from_env()
    return _default_config


def reset_default_config() -> None:
    """
    Drop the shared default configuration and its stores.

    The next ``get_default_config()`` call rebuilds it from the environment.
    """
    global _default_config
    _default_config = None
