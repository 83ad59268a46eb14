"""Seed script — populates the local SQL backend with sample accounts."""

import asyncio

from pairing_broker.config import settings
from pairing_broker.database.engine import build_engine, build_session_factory, init_db
from pairing_broker.errors import UpstreamError
from pairing_broker.gateways.sql import SqlGateway

SAMPLE_ACCOUNTS = [
    ("alice@example.com", "alice-password"),
    ("bob@example.com", "bob-password"),
    ("carol@example.com", "carol-password"),
]


async def seed() -> None:
    """Create the sample accounts, skipping any that already exist."""
    engine = build_engine(settings.database_url)
    await init_db(engine)
    gateway = SqlGateway(build_session_factory(engine))

    created = 0
    for email, password in SAMPLE_ACCOUNTS:
        try:
            profile = await gateway.create_user(email, password)
        except UpstreamError:
            print(f"   {email} already exists, skipped")
            continue
        created += 1
        print(f"   {email} → {profile.id}")

    await engine.dispose()
    print(f"✅ Seeded {created} accounts into {settings.database_url}.")


if __name__ == "__main__":
    asyncio.run(seed())
