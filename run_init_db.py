import asyncio

from ratekeeper.core.config import get_settings
from ratekeeper.core.db import check_connection, close_engine, init_engine
from ratekeeper.infra.db.models import Base


async def main() -> None:
    settings = get_settings()
    engine = init_engine(settings)
    try:
        await check_connection(
            engine,
            retries=settings.db_connect_retries,
            delay_seconds=settings.db_connect_retry_delay_seconds,
        )
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        print("rate_limits table ready")
    finally:
        await close_engine(engine)


if __name__ == "__main__":
    asyncio.run(main())
