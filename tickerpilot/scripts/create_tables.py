# tickerpilot/scripts/create_tables.py
import asyncio

from sqlalchemy import inspect

from tickerpilot.db.base import Base, import_models
from tickerpilot.db.session import engine

# Registers users, packages, user_subscriptions and paddle_webhook_events
import_models()


async def main() -> None:
    async with engine.begin() as conn:
        existing = set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()

    for name in Base.metadata.tables:
        state = "exists" if name in existing else "created"
        print(f"  {name}: {state}")


if __name__ == "__main__":
    asyncio.run(main())
