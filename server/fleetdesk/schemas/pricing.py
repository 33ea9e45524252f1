"""Pricing settings snapshot and quote schemas."""

from datetime import date, datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SeasonRule(BaseModel):
    """A high-season surcharge, applied per calendar day inside the inclusive date range."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str = ""
    start_date: date
    end_date: date
    price_increase: int = Field(0, ge=0)

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class CoverageArea(BaseModel):
    """A delivery/service area with per-day surcharges."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    extra_price: int = Field(0, ge=0)
    extra_driver_price: int = Field(0, ge=0)


class PricingSettings(BaseModel):
    """
    Immutable snapshot of one tenant's pricing configuration.

    Loaded once per request and passed explicitly to the pricing engine.
    Defaults apply to tenants that never saved their settings.
    """

    model_config = ConfigDict(frozen=True)

    short_distance_limit_km: float = 30
    short_distance_price: int = 150_000
    long_distance_limit_km: float = 600
    long_distance_price: int = 500_000
    overnight_price: int = 150_000
    standard_driver_rate: int = 150_000

    agent_markup_type: Literal["percent", "nominal"] = "percent"
    agent_markup_value: float = 10
    customer_markup_type: Literal["percent", "nominal"] = "percent"
    customer_markup_value: float = 25

    coverage_areas: tuple[CoverageArea, ...] = ()
    season_rules: tuple[SeasonRule, ...] = ()
    # Display labels only, e.g. "12 hours" or "Full day"
    rental_packages: tuple[str, ...] = ()

    def find_area(self, area_id: str) -> Optional[CoverageArea]:
        for area in self.coverage_areas:
            if area.id == area_id:
                return area
        return None


class PriceBreakdown(BaseModel):
    """Itemised result of a price computation. ``total`` is what the booking stores."""

    rental_days: int
    base_rental: int
    season_surcharge: int
    area_surcharge: int
    driver_daily_rate: int
    driver_cost: int
    overnight_fee: int
    delivery_fee: int
    overdue_fee: int
    extra_fee: int
    total: int
    agent_price: int = Field(..., description="Quote for agents, rounded up to 1,000")
    customer_price: int = Field(..., description="Quote for walk-in customers, rounded up to 1,000")


class QuoteRequest(BaseModel):
    """Request schema for a price quote."""

    car_id: UUID = Field(..., description="Car to price")
    driver_id: Optional[UUID] = Field(None, description="Selected driver, if any")
    with_driver: bool = Field(False, description="Include a driver even when none is selected yet")
    start_at: datetime
    end_at: datetime
    coverage_area_id: Optional[str] = None
    distance_km: Optional[float] = Field(None, ge=0)
    use_overnight: bool = False
    delivery_fee: int = Field(0, ge=0)
    overdue_fee: int = Field(0, ge=0)
    extra_fee: int = Field(0, ge=0)
