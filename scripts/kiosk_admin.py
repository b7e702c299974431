#!/usr/bin/env python3
"""
Administer a nursery's kiosk (entry/exit terminal) account.

Subcommands:
- status: show lock state and remaining attempts
- unlock: clear a lock and reset the failed-attempt counter
- set-password: set a new bcrypt password (prompted, never echoed)

Usage:
    uv run python scripts/kiosk_admin.py status --nursery-id 1
    uv run python scripts/kiosk_admin.py unlock --nursery-id 1
    uv run python scripts/kiosk_admin.py set-password --nursery-id 1
"""

import argparse
import asyncio
import getpass
import sys

from nursery_auth.core.database import engine, get_async_session
from nursery_auth.core.errors import NotFound
from nursery_auth.services.kiosk import get_kiosk_lock_status, set_kiosk_password, unlock_kiosk


async def show_status(nursery_id: int) -> None:
    async with get_async_session() as db:
        status = await get_kiosk_lock_status(db, nursery_id)

    print("\n" + "=" * 50)
    print(f"KIOSK ACCOUNT - NURSERY {nursery_id}")
    print("=" * 50)
    print(f"Locked:             {'yes' if status.is_locked else 'no'}")
    if status.is_locked:
        print(f"Locked until (UTC): {status.locked_until:%Y-%m-%d %H:%M:%S}")
        print(f"Remaining minutes:  {status.remaining_minutes}")
    print(f"Failed attempts:    {status.login_attempts}")
    print(f"Remaining attempts: {status.remaining_attempts}")


async def unlock(nursery_id: int) -> None:
    async with get_async_session() as db:
        await unlock_kiosk(db, nursery_id)
    print(f"✓ Kiosk account for nursery {nursery_id} unlocked")


async def set_password(nursery_id: int) -> None:
    password = getpass.getpass("New kiosk password: ")
    if len(password) < 8:
        print("\nERROR: Password must be at least 8 characters")
        sys.exit(1)
    if getpass.getpass("Repeat password: ") != password:
        print("\nERROR: Passwords do not match")
        sys.exit(1)

    async with get_async_session() as db:
        await set_kiosk_password(db, nursery_id, password)
    print(f"✓ Kiosk password for nursery {nursery_id} updated")


async def main() -> None:
    parser = argparse.ArgumentParser(description="Administer a nursery kiosk account")
    parser.add_argument(
        "command",
        choices=["status", "unlock", "set-password"],
        help="Action to perform",
    )
    parser.add_argument(
        "--nursery-id",
        type=int,
        required=True,
        help="Nursery whose kiosk account to administer",
    )
    args = parser.parse_args()

    actions = {
        "status": show_status,
        "unlock": unlock,
        "set-password": set_password,
    }

    try:
        await actions[args.command](args.nursery_id)
    except NotFound:
        print(f"\nERROR: Nursery {args.nursery_id} not found")
        sys.exit(1)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
