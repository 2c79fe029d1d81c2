# tickerpilot/scripts/ensure_basic_subscriptions.py
import argparse
import asyncio

from tickerpilot.db.base import import_models
from tickerpilot.db.session import async_session
from tickerpilot.services.subscription_service import ensure_basic_subscriptions

import_models()


async def main(dry_run: bool) -> dict:
    async with async_session() as db:
        result = await ensure_basic_subscriptions(db, dry_run=dry_run)

    verb = "Would move" if dry_run else "Moved"
    for change in result["changes"]:
        print(f"  {change['user_id']}: {change['reason']}")
    print(f"{verb} {len(result['changes'])} of {result['checked']} user(s) to Basic")
    return result


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Give every active user a subscription row, downgrading ended ones to Basic."
    )
    parser.add_argument("--dry-run", action="store_true", help="list the users that would change")
    args = parser.parse_args()
    asyncio.run(main(args.dry_run))
