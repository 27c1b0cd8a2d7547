"""Create the account schema and seed demo users for development."""
from __future__ import annotations

import asyncio

from callroom.core.security import hash_password
from callroom.db.session import SessionLocal, create_schema
from callroom.repositories import users as users_repo

DEMO_USERS = [
    {"username": "alice", "password": "alice-demo"},
    {"username": "bob", "password": "bob-demo"},
]


async def seed_users() -> None:
    """Insert demo accounts that do not exist yet."""

    async with SessionLocal() as session:
        async with session.begin():
            for user_data in DEMO_USERS:
                existing = await users_repo.get_by_username(session, user_data["username"])
                if existing is None:
                    await users_repo.create_user(
                        session,
                        username=user_data["username"],
                        password_hash=hash_password(user_data["password"]),
                    )
                else:
                    existing.password_hash = hash_password(user_data["password"])
                    session.add(existing)


async def main() -> None:
    await create_schema()
    await seed_users()
    print("Database schema ensured and demo users seeded.")


if __name__ == "__main__":
    asyncio.run(main())
