import asyncio

from dotenv import load_dotenv

from odatapipe import JsonBatch, ODataQueryable, RuntimeConfig, setup_logging

load_dotenv()

SERVICE_URL = "https://services.odata.org/V4/TripPinServiceRW"


def build_queryables(batch: JsonBatch, config: RuntimeConfig) -> list[ODataQueryable]:
    """Build two queryables sharing the same batch."""
    people = ODataQueryable(SERVICE_URL, config=config).append("People")
    people.query["$top"] = "3"
    people.query["$select"] = "UserName,FirstName"
    airlines = ODataQueryable(SERVICE_URL, config=config).append("Airlines")
    return [people.in_batch(batch), airlines.in_batch(batch)]


async def main() -> None:
    """Run the batched reads example."""
    config = RuntimeConfig.from_env()
    batch = JsonBatch(base_url=SERVICE_URL)
    tasks = [queryable.get() for queryable in build_queryables(batch=batch, config=config)]
    await batch.execute()
    people, airlines = await asyncio.gather(*tasks)
    for person in people:
        print(f"{person['UserName']}: {person['FirstName']}")
    print(f"Airlines: {', '.join(airline['Name'] for airline in airlines)}")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
