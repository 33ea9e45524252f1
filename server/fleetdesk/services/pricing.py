"""Pricing engine.

Pure functions: everything a quote depends on is passed in, including the
tenant's :class:`~fleetdesk.schemas.pricing.PricingSettings` snapshot.
"""

import math
from datetime import date, datetime, timedelta
from decimal import ROUND_CEILING, Decimal
from typing import Optional

from ..core.exceptions import ValidationError
from ..schemas.pricing import PriceBreakdown, PricingSettings

HOURS_PER_DAY = 24


def round_up_to_thousand(amount) -> int:
    """Round a currency amount up to the next multiple of 1,000."""
    thousands = (Decimal(str(amount)) / 1000).to_integral_value(rounding=ROUND_CEILING)
    return int(thousands) * 1000


def rental_days(start_at: datetime, end_at: datetime) -> int:
    """Number of billable days: started 24h periods, never less than one."""
    if end_at <= start_at:
        raise ValidationError("end_at must be after start_at")
    hours = (end_at - start_at).total_seconds() / 3600
    return max(1, math.ceil(hours / HOURS_PER_DAY))


def season_surcharge(start_day: date, days: int, settings: PricingSettings) -> int:
    """
    Sum the surcharge of every billable day.

    Each day takes the first rule that covers it, in (start_date, id) order.
    """
    rules = sorted(settings.season_rules, key=lambda r: (r.start_date, r.id or ""))
    total = 0
    for offset in range(days):
        day = start_day + timedelta(days=offset)
        for rule in rules:
            if rule.covers(day):
                total += rule.price_increase
                break
    return total


def driver_daily_rate(
    settings: PricingSettings,
    car_driver_salary: Optional[int] = None,
    driver_rate: Optional[int] = None,
    distance_km: Optional[float] = None,
) -> int:
    """
    Resolve the daily driver rate.

    Order: car-specific salary, then distance tier, then the selected
    driver's own rate, then the tenant's standard rate.
    """
    if car_driver_salary and car_driver_salary > 0:
        return car_driver_salary

    # Zero means the trip distance is unknown
    if distance_km is not None and distance_km > 0:
        if distance_km < settings.short_distance_limit_km:
            return settings.short_distance_price
        if distance_km > settings.long_distance_limit_km:
            return settings.long_distance_price

    if driver_rate and driver_rate > 0:
        return driver_rate

    return settings.standard_driver_rate


def apply_markup(total: int, markup_type: str, markup_value: float) -> int:
    """Quote price for a markup, rounded up to 1,000."""
    if markup_type == "nominal":
        return round_up_to_thousand(Decimal(total) + Decimal(str(markup_value)))
    return round_up_to_thousand(Decimal(total) * (100 + Decimal(str(markup_value))) / 100)


def calculate_price(
    *,
    price_per_day: int,
    start_at: datetime,
    end_at: datetime,
    settings: PricingSettings,
    with_driver: bool = False,
    car_driver_salary: Optional[int] = None,
    driver_rate: Optional[int] = None,
    coverage_area_id: Optional[str] = None,
    distance_km: Optional[float] = None,
    use_overnight: bool = False,
    delivery_fee: int = 0,
    overdue_fee: int = 0,
    extra_fee: int = 0,
) -> PriceBreakdown:
    """
    Compute the total price of a rental and its breakdown.

    Args:
        price_per_day: Car's daily rental rate
        start_at: Interval start
        end_at: Interval end (exclusive)
        settings: Tenant pricing snapshot
        with_driver: Whether a driver is included
        car_driver_salary: Car-specific driver salary, preferred when positive
        driver_rate: Selected driver's own daily rate
        coverage_area_id: Area whose surcharges apply
        distance_km: Trip distance, selects a driver tier when known
        use_overnight: Charge the overnight fee for multi-day driven rentals
        delivery_fee: Flat delivery fee
        overdue_fee: Flat overdue fee
        extra_fee: Flat ad-hoc fee

    Returns:
        PriceBreakdown with the unrounded total and the rounded markup quotes

    Raises:
        ValidationError: If the interval is empty or the coverage area is unknown
    """
    days = rental_days(start_at, end_at)

    base_rental = price_per_day * days
    season = season_surcharge(start_at.date(), days, settings)

    area = 0
    if coverage_area_id:
        coverage_area = settings.find_area(coverage_area_id)
        if coverage_area is None:
            raise ValidationError(
                f"Unknown coverage area '{coverage_area_id}'",
                errors={"coverage_area_id": coverage_area_id},
            )
        area = coverage_area.extra_price * days
        if with_driver:
            area += coverage_area.extra_driver_price * days

    daily_rate = 0
    driver_cost = 0
    overnight = 0
    if with_driver:
        daily_rate = driver_daily_rate(settings, car_driver_salary, driver_rate, distance_km)
        driver_cost = daily_rate * days
        if use_overnight and days > 1:
            overnight = (days - 1) * settings.overnight_price

    total = (
        base_rental + season + area + driver_cost + overnight
        + delivery_fee + overdue_fee + extra_fee
    )

    return PriceBreakdown(
        rental_days=days,
        base_rental=base_rental,
        season_surcharge=season,
        area_surcharge=area,
        driver_daily_rate=daily_rate,
        driver_cost=driver_cost,
        overnight_fee=overnight,
        delivery_fee=delivery_fee,
        overdue_fee=overdue_fee,
        extra_fee=extra_fee,
        total=total,
        agent_price=apply_markup(total, settings.agent_markup_type, settings.agent_markup_value),
        customer_price=apply_markup(total, settings.customer_markup_type, settings.customer_markup_value),
    )
