import asyncio
import time

from dotenv import load_dotenv

from odatapipe import CachingOptions, ODataQueryable, RuntimeConfig, setup_logging
from odatapipe.storage import resolve_cache_path

load_dotenv()

SERVICE_URL = "https://services.odata.org/V4/TripPinServiceRW"


async def timed_get(queryable: ODataQueryable) -> float:
    """Return how long one GET took, in seconds."""
    start = time.perf_counter()
    await queryable.get()
    return time.perf_counter() - start


async def main() -> None:
    """Run the cached reads example: the second read never reaches the network."""
    config = RuntimeConfig.from_env(default_caching_store="local")
    airports = (
        ODataQueryable(SERVICE_URL, config=config)
        .append("Airports")
        .using_caching(CachingOptions(key="trippin-airports"))
    )
    print(f"First read: {await timed_get(airports):.3f}s")
    print(f"Cached read: {await timed_get(airports):.3f}s")
    print(f"Cache file: {resolve_cache_path(path=config.cache_path)}")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
