"""Booking service: creation, partial updates, status transitions and payments."""

import logging
from datetime import datetime
from typing import NamedTuple, Optional
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import as_naive_utc, utcnow
from ..core.exceptions import (
    BlacklistedCustomerError,
    ChecklistRequiredError,
    IllegalTransitionError,
    NotFoundError,
    ProblemDetailsException,
    ResourceConflictError,
    StorageError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.booking import DEFERRED_TERMS, Booking, BookingStatus, DeferredPaymentPlan, PaymentMethod
from ..models.fleet import Car, Customer, Driver
from ..schemas.booking import BookingDraft, BookingUpdate, Checklist
from ..schemas.ledger import ReconcileResult
from ..schemas.pricing import PriceBreakdown, QuoteRequest
from .blacklist_service import BlacklistService
from .calendar_service import ResourceCalendar, resource_keys, resource_locks
from .ledger_service import LedgerReconciler
from .marketplace_service import MarketplaceBroker
from .pricing import calculate_price
from .settings_service import SettingsService

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.ACTIVE, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.ACTIVE, BookingStatus.CANCELLED}),
    BookingStatus.ACTIVE: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# Fields of a partial update that change the quote
PRICING_FIELDS = frozenset({
    "delivery_fee", "overdue_fee", "extra_fee", "coverage_area_id", "distance_km", "use_overnight",
})

# Fields of a partial update copied onto the booking as-is
PLAIN_FIELDS = (
    "extra_fee_reason", "deposit_type", "deposit_description", "deposit_value", "notes",
)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[BookingStatus(current)]


def installment_amount(total: int, term_months: int) -> int:
    """Monthly installment of a deferred plan, rounded up to a whole unit."""
    return -(-total // term_months)


class BookingOutcome(NamedTuple):
    """A committed booking mutation and the ledger reconcile that followed it."""

    booking: Booking
    ledger: ReconcileResult


class BookingService:
    """Service for booking-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.calendar = ResourceCalendar(db)
        self.ledger = LedgerReconciler(db)
        self.settings_service = SettingsService(db)
        self.blacklist = BlacklistService(db)
        self.marketplace = MarketplaceBroker(db)

    async def get(self, tenant_id: UUID, booking_id: UUID) -> Booking:
        """
        Get a booking of the tenant, freshly read from the database.

        Raises:
            NotFoundError: If the booking does not exist in the tenant
        """
        try:
            result = await self.db.execute(
                select(Booking)
                .where(Booking.id == booking_id, Booking.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            )
        except DBAPIError as e:
            raise StorageError("booking.get") from e

        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def _load_car(self, car_id: UUID, owner_tenant_id: Optional[UUID]) -> Car:
        car = await self.db.get(Car, car_id)
        if car is None or (owner_tenant_id is not None and car.tenant_id != owner_tenant_id):
            raise NotFoundError(resource_type="car", resource_id=str(car_id))
        return car

    async def _load_driver(self, driver_id: Optional[UUID], tenant_id: UUID) -> Optional[Driver]:
        if driver_id is None:
            return None
        driver = await self.db.get(Driver, driver_id)
        if driver is None or driver.tenant_id != tenant_id:
            raise NotFoundError(resource_type="driver", resource_id=str(driver_id))
        return driver

    async def _load_customer(self, customer_id: UUID, tenant_id: UUID) -> Customer:
        customer = await self.db.get(Customer, customer_id)
        if customer is None or customer.tenant_id != tenant_id:
            raise NotFoundError(resource_type="customer", resource_id=str(customer_id))
        return customer

    async def _quote(
        self,
        tenant_id: UUID,
        car: Car,
        driver: Optional[Driver],
        start_at: datetime,
        end_at: datetime,
        source,
    ) -> PriceBreakdown:
        """Price a booking or draft with the tenant's current settings."""
        pricing_settings = await self.settings_service.snapshot(tenant_id)
        return calculate_price(
            price_per_day=car.price_per_day,
            start_at=start_at,
            end_at=end_at,
            settings=pricing_settings,
            with_driver=driver is not None,
            car_driver_salary=car.driver_daily_salary,
            driver_rate=driver.daily_rate if driver else None,
            coverage_area_id=source.coverage_area_id,
            distance_km=source.distance_km,
            use_overnight=source.use_overnight,
            delivery_fee=source.delivery_fee,
            overdue_fee=source.overdue_fee,
            extra_fee=source.extra_fee,
        )

    async def quote(self, tenant_id: UUID, request: QuoteRequest) -> PriceBreakdown:
        """
        Price a prospective rental without booking it.

        The car may be the tenant's own or another tenant's marketplace-ready
        car; the selected driver must belong to the car's tenant. The acting
        tenant's settings apply either way.

        Raises:
            NotFoundError: If the car or driver is not visible to the tenant
            ValidationError: If the interval is empty or the area unknown
        """
        car = await self._load_car(request.car_id, None)
        if car.tenant_id != tenant_id and not car.is_marketplace_ready:
            raise NotFoundError(resource_type="car", resource_id=str(request.car_id))
        driver = await self._load_driver(request.driver_id, car.tenant_id)

        pricing_settings = await self.settings_service.snapshot(tenant_id)
        return calculate_price(
            price_per_day=car.price_per_day,
            start_at=as_naive_utc(request.start_at),
            end_at=as_naive_utc(request.end_at),
            settings=pricing_settings,
            with_driver=driver is not None or request.with_driver,
            car_driver_salary=car.driver_daily_salary,
            driver_rate=driver.daily_rate if driver else None,
            coverage_area_id=request.coverage_area_id,
            distance_km=request.distance_km,
            use_overnight=request.use_overnight,
            delivery_fee=request.delivery_fee,
            overdue_fee=request.overdue_fee,
            extra_fee=request.extra_fee,
        )

    def _validate_payment(self, method: PaymentMethod, term: Optional[int]) -> None:
        if method == PaymentMethod.DEFERRED:
            if term not in DEFERRED_TERMS:
                raise ValidationError(
                    f"Deferred payment needs a term of {', '.join(map(str, DEFERRED_TERMS))} months",
                    errors={"deferred_term_months": term},
                )
        elif term is not None:
            raise ValidationError(
                "deferred_term_months is only allowed with the DEFERRED payment method",
                errors={"deferred_term_months": term},
            )

    async def _ensure_deferred_plan(self, booking_id: UUID, tenant_id: UUID, customer_id: UUID,
                                    total: int, term_months: int) -> None:
        """Add the booking's installment plan to the session unless one exists."""
        result = await self.db.execute(
            select(DeferredPaymentPlan.id).where(DeferredPaymentPlan.booking_id == booking_id)
        )
        if result.scalar_one_or_none() is not None:
            return

        self.db.add(DeferredPaymentPlan(
            tenant_id=tenant_id,
            booking_id=booking_id,
            customer_id=customer_id,
            total_amount=total,
            term_months=term_months,
            monthly_installment=installment_amount(total, term_months),
        ))

    async def _finish(self, tenant_id: UUID, booking_id: UUID) -> BookingOutcome:
        """Reconcile the ledger after a committed mutation and re-read the booking."""
        ledger = await self.ledger.reconcile_quietly(tenant_id, booking_id)
        booking = await self.get(tenant_id, booking_id)
        return BookingOutcome(booking=booking, ledger=ledger)

    async def create(self, tenant_id: UUID, draft: BookingDraft) -> BookingOutcome:
        """
        Create a booking after checking availability and the blacklist.

        The availability check and the insert run under an exclusive lock on
        the car (and driver), so of two overlapping creates exactly one wins.

        Args:
            tenant_id: The acting tenant
            draft: Booking to create

        Returns:
            BookingOutcome with the new booking and the ledger result

        Raises:
            ValidationError: If the draft is inconsistent
            NotFoundError: If the car, driver, customer or marketplace request is missing
            BlacklistedCustomerError: If the customer is blacklisted
            ResourceConflictError: If the car or driver is already booked
            AlreadyResolvedError: If a marketplace side was already converted
        """
        start_at, end_at = as_naive_utc(draft.start_at), as_naive_utc(draft.end_at)
        if start_at >= end_at:
            raise ValidationError("start_at must be before end_at")

        self._validate_payment(draft.payment_method, draft.deferred_term_months)

        if (draft.marketplace_request_id is None) != (draft.marketplace_side is None):
            raise ValidationError("marketplace_request_id and marketplace_side must be given together")
        if draft.customer_id is None and draft.marketplace_side != "SUPPLIER":
            raise ValidationError("customer_id is required", errors={"customer_id": None})

        keys = resource_keys(tenant_id, draft.car_id, draft.driver_id)
        async with resource_locks.hold(keys):
            try:
                booking = await self._create_locked(tenant_id, draft, start_at, end_at, keys)
            except ProblemDetailsException:
                await self.db.rollback()
                raise
            except IntegrityError as e:
                # Exclusion constraint: a concurrent writer on another process won
                await self.db.rollback()
                metrics_collector.record_booking_conflict()
                logger.warning(
                    "Booking creation lost a race on the storage constraint",
                    extra={"car_id": str(draft.car_id), "error": str(e)}
                )
                raise ResourceConflictError(conflicting_resource={"car_id": str(draft.car_id)}) from e
            except DBAPIError as e:
                await self.db.rollback()
                raise StorageError("booking.create") from e

        metrics_collector.record_booking_created(BookingStatus(booking.status).value)
        logger.info(
            "Booking created successfully",
            extra={
                "booking_id": str(booking.id),
                "car_id": str(booking.car_id),
                "status": booking.status,
                "total_price": booking.total_price,
                "marketplace_request_id": str(draft.marketplace_request_id) if draft.marketplace_request_id else None,
            }
        )
        return await self._finish(tenant_id, booking.id)

    async def _create_locked(
        self,
        tenant_id: UUID,
        draft: BookingDraft,
        start_at: datetime,
        end_at: datetime,
        keys,
    ) -> Booking:
        side = draft.marketplace_side
        marketplace_request = None
        car_owner = tenant_id

        if draft.marketplace_request_id is not None:
            marketplace_request = await self.marketplace.load_for_conversion(
                draft.marketplace_request_id, side, tenant_id
            )
            if draft.car_id != marketplace_request.car_id:
                raise ValidationError("car_id must match the marketplace request")
            if (start_at, end_at) != (marketplace_request.start_at, marketplace_request.end_at):
                raise ValidationError("The interval must match the marketplace request")
            if side == "SUPPLIER":
                if draft.driver_id != marketplace_request.driver_id:
                    raise ValidationError("driver_id must match the marketplace request")
            else:
                if draft.driver_id is not None:
                    raise ValidationError("A requester-side booking cannot assign the supplier's driver")
                car_owner = marketplace_request.supplier_tenant_id

        car = await self._load_car(draft.car_id, car_owner)
        driver = await self._load_driver(draft.driver_id, tenant_id)
        if draft.customer_id is not None:
            customer = await self._load_customer(draft.customer_id, tenant_id)
        else:
            customer = await self.marketplace.ensure_partner_customer(
                tenant_id, marketplace_request.requester_tenant_id
            )

        hit, reason = await self.blacklist.check_customer(customer)
        if hit:
            raise BlacklistedCustomerError(str(customer.id), reason)

        await self.calendar.lock_resources(keys)
        conflict = await self.calendar.find_conflict(
            tenant_id, car.id, start_at, end_at, driver_id=draft.driver_id
        )
        if conflict is not None:
            metrics_collector.record_booking_conflict()
            logger.warning(
                "Booking creation failed - resource already booked",
                extra={
                    "car_id": str(car.id),
                    "driver_id": str(draft.driver_id) if draft.driver_id else None,
                    "conflicting_booking_id": str(conflict.id),
                }
            )
            raise ResourceConflictError(
                conflicting_resource={
                    "booking_id": str(conflict.id),
                    "car_id": str(conflict.car_id),
                    "driver_id": str(conflict.driver_id) if conflict.driver_id else None,
                }
            )

        breakdown = await self._quote(tenant_id, car, driver, start_at, end_at, draft)
        total = draft.total_price if draft.total_price is not None else breakdown.total

        # Deferred income is recognised up front, so the booking is committed from the start
        if draft.payment_method == PaymentMethod.DEFERRED:
            status = BookingStatus.CONFIRMED
        else:
            status = BookingStatus(draft.initial_status)

        booking = Booking(
            id=uuid4(),
            tenant_id=tenant_id,
            car_id=car.id,
            customer_id=customer.id,
            driver_id=draft.driver_id,
            start_at=start_at,
            end_at=end_at,
            status=status,
            total_price=total,
            amount_paid=draft.amount_paid,
            payment_method=draft.payment_method,
            deferred_term_months=draft.deferred_term_months,
            delivery_fee=draft.delivery_fee,
            overdue_fee=draft.overdue_fee,
            extra_fee=draft.extra_fee,
            extra_fee_reason=draft.extra_fee_reason,
            deposit_type=draft.deposit_type,
            deposit_description=draft.deposit_description,
            deposit_value=draft.deposit_value,
            coverage_area_id=draft.coverage_area_id,
            distance_km=draft.distance_km,
            use_overnight=draft.use_overnight,
            rental_days=breakdown.rental_days,
            driver_daily_rate=breakdown.driver_daily_rate,
            notes=draft.notes,
            revision=1,
            ledger_synced=False,
            marketplace_request_id=draft.marketplace_request_id,
            marketplace_side=side,
        )
        self.db.add(booking)
        await self.db.flush()

        if marketplace_request is not None:
            await self.marketplace.claim_conversion(marketplace_request.id, side, booking.id)

        if draft.payment_method == PaymentMethod.DEFERRED:
            await self._ensure_deferred_plan(
                booking.id, tenant_id, customer.id, total, draft.deferred_term_months
            )

        await self.db.commit()
        return booking

    async def transition(
        self,
        tenant_id: UUID,
        booking_id: UUID,
        new_status: BookingStatus,
        checklist: Optional[Checklist] = None,
        actual_return_at: Optional[datetime] = None,
    ) -> BookingOutcome:
        """
        Move a booking to a new status.

        ACTIVE needs a pickup checklist with a positive odometer and COMPLETED
        a return checklist whose odometer is not below the pickup one; either
        can come with the call or from an earlier save. Both copy the reading
        onto the car.

        Raises:
            NotFoundError: If the booking does not exist in the tenant
            IllegalTransitionError: If the status change is not allowed
            ChecklistRequiredError: If the needed checklist is missing or invalid
            ResourceConflictError: If the booking changed status concurrently
        """
        target = BookingStatus(new_status)
        booking = await self.get(tenant_id, booking_id)
        current = BookingStatus(booking.status)

        if not can_transition(current, target):
            logger.warning(
                "Illegal booking transition",
                extra={"booking_id": str(booking_id), "from_status": current.value, "to_status": target.value}
            )
            raise IllegalTransitionError(str(booking_id), current.value, target.value)

        values = {
            "status": target,
            "revision": Booking.revision + 1,
            "ledger_synced": False,
        }
        odometer = None

        if target == BookingStatus.ACTIVE:
            pickup = checklist.model_dump() if checklist else booking.pickup_checklist
            if not pickup or (pickup.get("odometer") or 0) <= 0:
                raise ChecklistRequiredError(
                    str(booking_id), "pickup", "A pickup checklist with an odometer above zero is required"
                )
            values["pickup_checklist"] = pickup
            odometer = pickup["odometer"]

        elif target == BookingStatus.COMPLETED:
            returned = checklist.model_dump() if checklist else booking.return_checklist
            if not returned or returned.get("odometer") is None:
                raise ChecklistRequiredError(
                    str(booking_id), "return", "A return checklist is required to complete a booking"
                )
            pickup_odometer = booking.pickup_odometer or 0
            if returned["odometer"] < pickup_odometer:
                raise ChecklistRequiredError(
                    str(booking_id),
                    "return",
                    f"Return odometer {returned['odometer']} is below pickup odometer {pickup_odometer}",
                )
            values["return_checklist"] = returned
            if actual_return_at is not None:
                values["actual_return_at"] = as_naive_utc(actual_return_at)
            elif booking.actual_return_at is None:
                values["actual_return_at"] = utcnow()
            odometer = returned["odometer"]

        car_id = booking.car_id
        try:
            # Compare-and-swap on the status that was checked above
            result = await self.db.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.tenant_id == tenant_id,
                    Booking.status == current,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise ResourceConflictError(
                    detail=f"Booking {booking_id} changed status concurrently",
                    conflicting_resource={"booking_id": str(booking_id)},
                )

            if odometer is not None:
                await self.db.execute(
                    update(Car)
                    .where(Car.id == car_id, Car.tenant_id == tenant_id)
                    .values(current_odometer=odometer)
                    .execution_options(synchronize_session=False)
                )

            await self.db.commit()
        except DBAPIError as e:
            await self.db.rollback()
            raise StorageError("booking.transition") from e

        metrics_collector.record_transition(target.value)
        logger.info(
            "Booking status changed",
            extra={
                "booking_id": str(booking_id),
                "from_status": current.value,
                "to_status": target.value,
                "odometer": odometer,
            }
        )
        return await self._finish(tenant_id, booking_id)

    async def update_payment(
        self,
        tenant_id: UUID,
        booking_id: UUID,
        amount_paid: Optional[int] = None,
        payment_method: Optional[PaymentMethod] = None,
        deferred_term_months: Optional[int] = None,
    ) -> BookingOutcome:
        """
        Record a payment. Leaving ``amount_paid`` out settles the booking in full.

        Switching to the deferred method creates the installment plan once.

        Raises:
            NotFoundError: If the booking does not exist in the tenant
            ValidationError: If the deferred term is missing or invalid
        """
        booking = await self.get(tenant_id, booking_id)

        method = PaymentMethod(payment_method or booking.payment_method)
        term = None
        if method == PaymentMethod.DEFERRED:
            term = deferred_term_months or booking.deferred_term_months
        elif deferred_term_months is not None:
            term = deferred_term_months
        self._validate_payment(method, term)

        amount = booking.total_price if amount_paid is None else amount_paid
        if amount < 0:
            raise ValidationError("amount_paid cannot be negative")

        try:
            await self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.tenant_id == tenant_id)
                .values(
                    amount_paid=amount,
                    payment_method=method,
                    deferred_term_months=term,
                    revision=Booking.revision + 1,
                    ledger_synced=False,
                )
                .execution_options(synchronize_session=False)
            )
            if method == PaymentMethod.DEFERRED:
                await self._ensure_deferred_plan(
                    booking_id, tenant_id, booking.customer_id, booking.total_price, term
                )
            await self.db.commit()
        except DBAPIError as e:
            await self.db.rollback()
            raise StorageError("booking.update_payment") from e

        logger.info(
            "Booking payment updated",
            extra={
                "booking_id": str(booking_id),
                "amount_paid": amount,
                "payment_method": method.value,
                "total_price": booking.total_price,
            }
        )
        return await self._finish(tenant_id, booking_id)

    async def update(self, tenant_id: UUID, booking_id: UUID, changes: BookingUpdate) -> BookingOutcome:
        """
        Apply a partial update.

        Changing the car, driver or interval re-checks availability (ignoring
        this booking) under the resource lock. Changing any pricing input
        re-quotes the booking unless ``total_price`` is given explicitly.
        Checklists can be saved here ahead of a transition.

        Raises:
            NotFoundError: If the booking, car or driver does not exist in the tenant
            ValidationError: If the change is inconsistent
            ChecklistRequiredError: If a saved checklist would not satisfy the
                booking's current status
            ResourceConflictError: If the new car, driver or interval is taken,
                or the booking was modified concurrently
        """
        fields = changes.model_fields_set
        booking = await self.get(tenant_id, booking_id)
        seen_revision = booking.revision

        car_id = changes.car_id if "car_id" in fields else booking.car_id
        driver_id = changes.driver_id if "driver_id" in fields else booking.driver_id
        start_at = as_naive_utc(changes.start_at) if "start_at" in fields and changes.start_at else booking.start_at
        end_at = as_naive_utc(changes.end_at) if "end_at" in fields and changes.end_at else booking.end_at

        if car_id is None:
            raise ValidationError("car_id cannot be removed", errors={"car_id": None})
        if start_at >= end_at:
            raise ValidationError("start_at must be before end_at")

        resource_changed = (
            car_id != booking.car_id
            or driver_id != booking.driver_id
            or start_at != booking.start_at
            or end_at != booking.end_at
        )
        if resource_changed:
            if booking.status in (BookingStatus.COMPLETED, BookingStatus.CANCELLED):
                raise ValidationError(f"A {booking.status} booking cannot be rescheduled or reassigned")
            if booking.marketplace_request_id is not None and (
                car_id != booking.car_id or start_at != booking.start_at or end_at != booking.end_at
            ):
                raise ValidationError("A marketplace booking keeps the car and interval of its request")
            if booking.marketplace_side == "REQUESTER" and driver_id is not None:
                raise ValidationError("A requester-side booking cannot assign the supplier's driver")

        if fields & {"pickup_checklist", "return_checklist"}:
            self._check_saved_checklists(booking, changes, fields)

        keys = resource_keys(tenant_id, car_id, driver_id) if resource_changed else []
        async with resource_locks.hold(keys):
            try:
                await self._update_locked(
                    tenant_id, booking, changes, fields, seen_revision,
                    car_id, driver_id, start_at, end_at, resource_changed, keys,
                )
            except ProblemDetailsException:
                await self.db.rollback()
                raise
            except IntegrityError as e:
                await self.db.rollback()
                metrics_collector.record_booking_conflict()
                raise ResourceConflictError(conflicting_resource={"car_id": str(car_id)}) from e
            except DBAPIError as e:
                await self.db.rollback()
                raise StorageError("booking.update") from e

        logger.info(
            "Booking updated",
            extra={
                "booking_id": str(booking_id),
                "changed_fields": sorted(fields),
                "resource_changed": resource_changed,
            }
        )
        return await self._finish(tenant_id, booking_id)

    def _check_saved_checklists(self, booking: Booking, changes: BookingUpdate, fields: set[str]) -> None:
        """Keep the checklists of an ACTIVE or COMPLETED booking as valid as its transition required."""
        status = BookingStatus(booking.status)
        if status not in (BookingStatus.ACTIVE, BookingStatus.COMPLETED):
            return

        pickup_odometer = booking.pickup_odometer
        if "pickup_checklist" in fields:
            pickup = changes.pickup_checklist
            pickup_odometer = pickup.odometer if pickup else None
            if not pickup_odometer or pickup_odometer <= 0:
                raise ChecklistRequiredError(
                    str(booking.id), "pickup",
                    f"A {status.value} booking needs a pickup checklist with an odometer above zero",
                )

        if status != BookingStatus.COMPLETED:
            return
        if "return_checklist" in fields:
            returned = changes.return_checklist
            return_odometer = returned.odometer if returned else None
        else:
            return_odometer = (booking.return_checklist or {}).get("odometer")
        if return_odometer is None:
            raise ChecklistRequiredError(
                str(booking.id), "return", "A COMPLETED booking needs a return checklist"
            )
        if return_odometer < (pickup_odometer or 0):
            raise ChecklistRequiredError(
                str(booking.id),
                "return",
                f"Return odometer {return_odometer} is below pickup odometer {pickup_odometer}",
            )

    async def _update_locked(
        self,
        tenant_id: UUID,
        booking: Booking,
        changes: BookingUpdate,
        fields: set[str],
        seen_revision: int,
        car_id: UUID,
        driver_id: Optional[UUID],
        start_at: datetime,
        end_at: datetime,
        resource_changed: bool,
        keys,
    ) -> None:
        booking_id = booking.id
        car_owner = None if booking.marketplace_side == "REQUESTER" else tenant_id
        car = await self._load_car(car_id, car_owner)
        driver = await self._load_driver(driver_id, tenant_id)

        if resource_changed:
            await self.calendar.lock_resources(keys)
            conflict = await self.calendar.find_conflict(
                tenant_id, car_id, start_at, end_at,
                driver_id=driver_id,
                exclude_booking_id=booking_id,
            )
            if conflict is not None:
                metrics_collector.record_booking_conflict()
                raise ResourceConflictError(
                    conflicting_resource={
                        "booking_id": str(conflict.id),
                        "car_id": str(conflict.car_id),
                    }
                )

        values = {
            "car_id": car_id,
            "driver_id": driver_id,
            "start_at": start_at,
            "end_at": end_at,
            "revision": Booking.revision + 1,
            "ledger_synced": False,
        }

        for field in PRICING_FIELDS | set(PLAIN_FIELDS):
            if field in fields:
                value = getattr(changes, field)
                if field in ("delivery_fee", "overdue_fee", "extra_fee", "use_overnight") and value is None:
                    raise ValidationError(f"{field} cannot be null", errors={field: None})
                values[field] = value

        for checklist_field in ("pickup_checklist", "return_checklist"):
            if checklist_field in fields:
                checklist = getattr(changes, checklist_field)
                values[checklist_field] = checklist.model_dump() if checklist else None
        if "actual_return_at" in fields:
            values["actual_return_at"] = (
                as_naive_utc(changes.actual_return_at) if changes.actual_return_at else None
            )

        if resource_changed or fields & PRICING_FIELDS:
            source = _PricingSource(booking, values)
            breakdown = await self._quote(tenant_id, car, driver, start_at, end_at, source)
            values["rental_days"] = breakdown.rental_days
            values["driver_daily_rate"] = breakdown.driver_daily_rate
            values["total_price"] = breakdown.total
        if "total_price" in fields and changes.total_price is not None:
            values["total_price"] = changes.total_price

        result = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.tenant_id == tenant_id,
                Booking.revision == seen_revision,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ResourceConflictError(
                detail=f"Booking {booking_id} was modified concurrently",
                conflicting_resource={"booking_id": str(booking_id)},
            )
        await self.db.commit()


class _PricingSource:
    """Pricing inputs of a booking with pending changes applied on top."""

    def __init__(self, booking: Booking, values: dict):
        self._booking = booking
        self._values = values

    def __getattr__(self, name):
        if name in self._values:
            return self._values[name]
        return getattr(self._booking, name)
