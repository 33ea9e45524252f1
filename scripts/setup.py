#!/usr/bin/env python3
"""Setup script for the FleetDesk API: migrate the database and seed two demo tenants."""

import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

import jwt
from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from fleetdesk.core.config import settings
from fleetdesk.core.database import async_session_factory, close_db
from fleetdesk.models import (
    Car,
    CarOwnerType,
    Company,
    Customer,
    Driver,
    GlobalBlacklistEntry,
    HighSeason,
    TenantSettings,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Apply every Alembic migration up to head."""
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations...")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> list[Company]:
    """Create two rental companies with cars, a driver, a customer and settings."""
    async with async_session_factory() as db:
        existing = await db.execute(select(func.count()).select_from(Company))
        if existing.scalar_one() > 0:
            logger.info("Sample data already exists, skipping...")
            result = await db.execute(select(Company).order_by(Company.name))
            return list(result.scalars().all())

        try:
            bali = Company(name="Bali Trans Rental", phone="+62 361 555 0101")
            java = Company(name="Java Fleet", phone="+62 21 555 0202")
            db.add_all([bali, java])
            await db.flush()

            db.add(TenantSettings(tenant_id=bali.id, data={
                "overnight_price": 150000,
                "coverage_areas": [
                    {"id": "ubud", "name": "Ubud", "extra_price": 50000, "extra_driver_price": 25000},
                    {"id": "north", "name": "North Bali", "extra_price": 100000, "extra_driver_price": 50000},
                ],
            }))
            db.add(HighSeason(
                tenant_id=bali.id,
                name="Year end",
                start_date=date(date.today().year, 12, 20),
                end_date=date(date.today().year + 1, 1, 5),
                price_increase=100000,
            ))

            db.add_all([
                Car(tenant_id=bali.id, brand="Toyota", model="Avanza", plate="DK 1234 AB",
                    category="MPV", price_per_day=300000, current_odometer=10000),
                Car(tenant_id=bali.id, brand="Toyota", model="Innova", plate="DK 5678 CD",
                    category="MPV", owner_type=CarOwnerType.PARTNER, partner_name="Pak Made",
                    partner_share_pct=70, price_per_day=450000, driver_daily_salary=200000,
                    is_marketplace_ready=True),
                Car(tenant_id=java.id, brand="Honda", model="Brio", plate="B 9012 EF",
                    category="City", price_per_day=250000, is_marketplace_ready=True),
                Driver(tenant_id=bali.id, name="Wayan", phone="+62 812 0000 1111", daily_rate=175000),
                Customer(tenant_id=bali.id, name="Alice Walker", phone="+61 400 000 000",
                         national_id="P1234567"),
                GlobalBlacklistEntry(national_id="9999000011112222", reason="Unreturned vehicle",
                                     reported_by_tenant_id=java.id),
            ])

            await db.commit()
            logger.info("Sample data created successfully!")
            return [bali, java]

        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to create sample data: {e}")
            raise


def demo_token(tenant_id) -> str:
    return jwt.encode({"tenant_id": str(tenant_id)}, settings.bearer_token_secret, algorithm="HS256")


async def main():
    """Main setup function."""
    logger.info("Starting FleetDesk API setup...")

    await asyncio.to_thread(run_migrations)
    companies = await create_sample_data()
    await close_db()

    for company in companies:
        logger.info(f"Bearer token for {company.name}: {demo_token(company.id)}")

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn fleetdesk.main:app --reload")


if __name__ == "__main__":
    asyncio.run(main())
