"""Initialize database tables and seed reference data.

Usage::

    expense-desk-init-db [--promote-admin EMAIL]

Creates the tables, inserts the default categories and project codes
(idempotent) and optionally promotes an existing profile to ADMIN.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.core.database import AsyncSessionLocal, init_db
from expense_desk.models.enums import AppRole
from expense_desk.models.tables import Category, Profile, ProjectCode

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("Viajes", 2000),
    ("Dietas", 800),
    ("Transporte", 500),
    ("Alojamiento", 1500),
    ("Material", 1000),
    ("Software", 3000),
    ("Otros", 500),
]

DEFAULT_PROJECT_CODES = [
    ("PRJ-001", "Proyecto General"),
    ("PRJ-CLIENTE-A", "Cliente A - Desarrollo"),
    ("INT-OPS", "Operaciones Internas"),
]


async def seed_reference_data(session: AsyncSession) -> int:
    """Insert missing default categories and project codes; return rows added."""
    existing_categories = set((await session.execute(select(Category.name))).scalars().all())
    existing_codes = set((await session.execute(select(ProjectCode.code))).scalars().all())
    added = 0
    for name, budget in DEFAULT_CATEGORIES:
        if name not in existing_categories:
            session.add(Category(name=name, budget_monthly=budget))
            added += 1
    for code, name in DEFAULT_PROJECT_CODES:
        if code not in existing_codes:
            session.add(ProjectCode(code=code, name=name))
            added += 1
    await session.commit()
    return added


async def promote_admin(session: AsyncSession, email: str) -> bool:
    profile = (
        await session.execute(select(Profile).where(Profile.email == email.strip().lower()))
    ).scalar_one_or_none()
    if profile is None:
        return False
    profile.role = AppRole.ADMIN
    await session.commit()
    return True


async def main(promote: Optional[str] = None) -> None:
    print("Initializing database tables...")
    await init_db()
    async with AsyncSessionLocal() as session:
        added = await seed_reference_data(session)
        print(f"Seeded {added} reference rows")
        if promote:
            if await promote_admin(session, promote):
                print(f"Promoted {promote} to ADMIN")
            else:
                print(f"No profile found for {promote}")
    print("Database initialization complete!")


def run() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--promote-admin", metavar="EMAIL", help="give an existing profile the ADMIN role")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(args.promote_admin))


if __name__ == "__main__":
    run()
