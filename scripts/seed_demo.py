"""Seed demo landlords, tenants and properties.

Writes the created ids to a JSON file that ``scripts/load_test.py`` reads.
Usage: python -m scripts.seed_demo [--landlords 5] [--tenants 20] [--out seed_demo.json]
"""
import argparse
import asyncio
import json
import random
import sys
import uuid
from decimal import Decimal

sys.path.insert(0, ".")

from app.database import Base, async_session_factory, engine
from app.models.user import ActorRole, Property, User

CITIES = ["Lisbon", "Porto", "Madrid", "Valencia", "Berlin", "Amsterdam"]
KINDS = ["Studio", "1BR flat", "2BR flat", "Loft", "Room in shared flat"]


async def seed(landlords: int, tenants: int, per_landlord: int) -> dict:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    run = uuid.uuid4().hex[:6]
    out: dict = {"landlords": [], "tenants": [], "properties": []}

    async with async_session_factory() as session:
        for i in range(landlords):
            landlord = User(
                email=f"landlord_{run}_{i}@demo.roomify",
                display_name=f"Landlord {i}",
                role=ActorRole.LANDLORD,
            )
            session.add(landlord)
            await session.flush()
            out["landlords"].append(str(landlord.id))

            for j in range(per_landlord):
                prop = Property(
                    owner_id=landlord.id,
                    title=f"{random.choice(KINDS)} in {random.choice(CITIES)} #{i}-{j}",
                    monthly_price=Decimal(random.randrange(450, 2400, 25)),
                )
                session.add(prop)
                await session.flush()
                out["properties"].append(
                    {"id": str(prop.id), "owner_id": str(landlord.id)}
                )

        for i in range(tenants):
            tenant = User(
                email=f"tenant_{run}_{i}@demo.roomify",
                display_name=f"Tenant {i}",
                role=ActorRole.TENANT,
            )
            session.add(tenant)
            await session.flush()
            out["tenants"].append(str(tenant.id))

        await session.commit()

    await engine.dispose()
    return out


def main():
    parser = argparse.ArgumentParser(description="Seed Roomify demo data")
    parser.add_argument("--landlords", type=int, default=5)
    parser.add_argument("--tenants", type=int, default=20)
    parser.add_argument("--properties-per-landlord", type=int, default=2)
    parser.add_argument("--out", type=str, default="seed_demo.json")
    args = parser.parse_args()

    data = asyncio.run(seed(args.landlords, args.tenants, args.properties_per_landlord))
    with open(args.out, "w") as f:
        json.dump(data, f, indent=2)

    print(
        f"Seeded {len(data['landlords'])} landlords, {len(data['tenants'])} tenants, "
        f"{len(data['properties'])} properties -> {args.out}"
    )


if __name__ == "__main__":
    main()
