"""Per-tenant pricing settings lookup."""

import logging
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import StorageError, ValidationError
from ..models.tenant import HighSeason, TenantSettings
from ..schemas.pricing import PricingSettings, SeasonRule

logger = logging.getLogger(__name__)


class SettingsService:
    """Builds the immutable pricing snapshot a quote is computed from."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def snapshot(self, tenant_id: UUID) -> PricingSettings:
        """
        Load a tenant's pricing settings and season rules.

        Raises:
            ValidationError: If the stored settings document is malformed
            StorageError: If the database read fails
        """
        try:
            row = await self.db.get(TenantSettings, tenant_id)
            result = await self.db.execute(
                select(HighSeason)
                .where(HighSeason.tenant_id == tenant_id)
                .order_by(HighSeason.start_date, HighSeason.id)
            )
            seasons = result.scalars().all()
        except DBAPIError as e:
            logger.error(
                "Failed to load pricing settings",
                extra={"tenant_id": str(tenant_id), "error": str(e)}
            )
            raise StorageError("settings.snapshot") from e

        data = dict(row.data) if row and row.data else {}
        data["season_rules"] = [
            SeasonRule(
                id=str(season.id),
                name=season.name,
                start_date=season.start_date,
                end_date=season.end_date,
                price_increase=season.price_increase,
            )
            for season in seasons
        ]

        try:
            return PricingSettings.model_validate(data)
        except PydanticValidationError as e:
            logger.warning(
                "Stored pricing settings are invalid",
                extra={"tenant_id": str(tenant_id), "error": str(e)}
            )
            raise ValidationError("Tenant pricing settings are invalid") from e
