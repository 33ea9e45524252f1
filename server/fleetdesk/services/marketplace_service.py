"""Marketplace broker for cross-tenant rent-to-rent requests."""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import as_naive_utc, utcnow
from ..core.exceptions import (
    AlreadyResolvedError,
    NotAuthorizedError,
    NotFoundError,
    ResourceConflictError,
    SelfDealingNotAllowedError,
    StorageError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus
from ..models.fleet import Car, Customer, Driver
from ..models.marketplace import MarketplaceRequest, RequestStatus
from ..models.tenant import Company
from ..schemas.marketplace import MarketplaceCar, SearchCarsRequest, SendRequest
from .calendar_service import ResourceCalendar

logger = logging.getLogger(__name__)

PARTNER_CUSTOMER_SUFFIX = " (R2R Partner)"

_CONVERSION_COLUMNS = {
    "SUPPLIER": MarketplaceRequest.supplier_booking_id,
    "REQUESTER": MarketplaceRequest.requester_booking_id,
}


class MarketplaceBroker:
    """
    Service for marketplace requests.

    A request moves from PENDING to exactly one of APPROVED, REJECTED or
    EXPIRED. Every status change is a compare-and-swap on ``status =
    'PENDING'``, so a concurrent approval and expiry cannot both win.
    """

    def __init__(self, db: AsyncSession, request_ttl: Optional[timedelta] = None):
        self.db = db
        self.request_ttl = request_ttl or timedelta(minutes=settings.marketplace_request_ttl_minutes)
        self.calendar = ResourceCalendar(db)

    async def get_request(self, request_id: UUID) -> MarketplaceRequest:
        """
        Load a request by id, bypassing the identity map.

        Raises:
            NotFoundError: If the request does not exist
        """
        try:
            result = await self.db.execute(
                select(MarketplaceRequest)
                .where(MarketplaceRequest.id == request_id)
                .execution_options(populate_existing=True)
            )
        except DBAPIError as e:
            raise StorageError("marketplace.get_request") from e

        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError(resource_type="marketplace_request", resource_id=str(request_id))
        return request

    async def send_request(self, requester_tenant_id: UUID, request: SendRequest) -> MarketplaceRequest:
        """
        Ask another tenant for one of its marketplace-ready cars.

        Args:
            requester_tenant_id: The acting tenant
            request: Car, optional driver, interval and quoted price

        Returns:
            The new PENDING request

        Raises:
            SelfDealingNotAllowedError: If the supplier is the requester
            NotFoundError: If the car or driver does not belong to the supplier
            ValidationError: If the interval is empty or the car is not offered
            ResourceConflictError: If the supplier's car or driver is busy
        """
        if request.supplier_tenant_id == requester_tenant_id:
            logger.warning(
                "Marketplace request rejected - self dealing",
                extra={"tenant_id": str(requester_tenant_id)}
            )
            raise SelfDealingNotAllowedError(str(requester_tenant_id))

        start_at, end_at = as_naive_utc(request.start_at), as_naive_utc(request.end_at)
        if start_at >= end_at:
            raise ValidationError("start_at must be before end_at")

        car = await self.db.get(Car, request.car_id)
        if car is None or car.tenant_id != request.supplier_tenant_id:
            raise NotFoundError(resource_type="car", resource_id=str(request.car_id))
        if not car.is_marketplace_ready:
            raise ValidationError(
                "Car is not offered on the marketplace",
                errors={"car_id": str(request.car_id)},
            )

        if request.driver_id is not None:
            driver = await self.db.get(Driver, request.driver_id)
            if driver is None or driver.tenant_id != request.supplier_tenant_id:
                raise NotFoundError(resource_type="driver", resource_id=str(request.driver_id))

        available = await self.calendar.is_available(
            request.supplier_tenant_id,
            request.car_id,
            start_at,
            end_at,
            driver_id=request.driver_id,
        )
        if not available:
            raise ResourceConflictError(
                detail="The supplier's car or driver is already booked for the requested interval",
                conflicting_resource={"car_id": str(request.car_id)},
            )

        now = utcnow()
        marketplace_request = MarketplaceRequest(
            requester_tenant_id=requester_tenant_id,
            supplier_tenant_id=request.supplier_tenant_id,
            car_id=request.car_id,
            driver_id=request.driver_id,
            start_at=start_at,
            end_at=end_at,
            quoted_price=request.quoted_price,
            notes=request.notes,
            status=RequestStatus.PENDING,
            expires_at=now + self.request_ttl,
            created_at=now,
        )

        self.db.add(marketplace_request)
        try:
            await self.db.commit()
        except DBAPIError as e:
            await self.db.rollback()
            raise StorageError("marketplace.send_request") from e
        await self.db.refresh(marketplace_request)

        metrics_collector.record_marketplace_sent()
        logger.info(
            "Marketplace request sent",
            extra={
                "request_id": str(marketplace_request.id),
                "requester_tenant_id": str(requester_tenant_id),
                "supplier_tenant_id": str(request.supplier_tenant_id),
                "car_id": str(request.car_id),
                "expires_at": marketplace_request.expires_at.isoformat(),
            }
        )
        return marketplace_request

    async def _swap_status(self, request_id: UUID, new_status: RequestStatus, now: datetime) -> bool:
        """Move a PENDING request to ``new_status``. False when it was no longer PENDING."""
        result = await self.db.execute(
            update(MarketplaceRequest)
            .where(
                MarketplaceRequest.id == request_id,
                MarketplaceRequest.status == RequestStatus.PENDING,
            )
            .values(status=new_status, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def respond_to_request(
        self,
        request_id: UUID,
        decision: str,
        acting_tenant_id: UUID,
        now: Optional[datetime] = None,
    ) -> MarketplaceRequest:
        """
        Approve or reject a pending request as its supplier.

        A request already past its expiry is expired here instead of being
        resolved, so expiry holds even between sweeps.

        Args:
            request_id: Request to resolve
            decision: "APPROVE" or "REJECT"
            acting_tenant_id: Must be the request's supplier
            now: Current time, defaults to the clock

        Returns:
            The resolved request

        Raises:
            NotFoundError: If the request does not exist
            NotAuthorizedError: If the acting tenant is not the supplier
            AlreadyResolvedError: If the request is no longer pending or has expired
        """
        now = as_naive_utc(now) if now else utcnow()
        new_status = RequestStatus.APPROVED if decision == "APPROVE" else RequestStatus.REJECTED

        request = await self.get_request(request_id)

        if request.supplier_tenant_id != acting_tenant_id:
            logger.warning(
                "Marketplace response rejected - not the supplier",
                extra={"request_id": str(request_id), "acting_tenant_id": str(acting_tenant_id)}
            )
            raise NotAuthorizedError(
                detail="Only the supplier can respond to a marketplace request",
                acting_tenant_id=str(acting_tenant_id),
            )

        if request.status != RequestStatus.PENDING:
            raise AlreadyResolvedError(str(request_id), request.status)

        try:
            if request.expires_at <= now:
                if await self._swap_status(request_id, RequestStatus.EXPIRED, now):
                    metrics_collector.record_marketplace_expired()
                    logger.info("Marketplace request expired on response", extra={"request_id": str(request_id)})
                current = await self.get_request(request_id)
                raise AlreadyResolvedError(
                    str(request_id),
                    current.status,
                    detail=f"Marketplace request {request_id} expired at {request.expires_at.isoformat()}",
                )

            swapped = await self._swap_status(request_id, new_status, now)
        except DBAPIError as e:
            await self.db.rollback()
            raise StorageError("marketplace.respond") from e

        current = await self.get_request(request_id)
        if not swapped:
            raise AlreadyResolvedError(str(request_id), current.status)

        metrics_collector.record_marketplace_resolved(new_status.value)
        logger.info(
            "Marketplace request resolved",
            extra={"request_id": str(request_id), "decision": new_status.value}
        )
        return current

    async def expire_stale_requests(self, now: Optional[datetime] = None) -> int:
        """
        Expire every PENDING request whose expiry time has passed.

        Returns:
            Number of requests expired
        """
        now = as_naive_utc(now) if now else utcnow()
        try:
            result = await self.db.execute(
                update(MarketplaceRequest)
                .where(
                    MarketplaceRequest.status == RequestStatus.PENDING,
                    MarketplaceRequest.expires_at <= now,
                )
                .values(status=RequestStatus.EXPIRED, resolved_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except DBAPIError as e:
            await self.db.rollback()
            raise StorageError("marketplace.expire") from e

        expired = result.rowcount or 0
        if expired:
            metrics_collector.record_marketplace_expired(expired)
            logger.info("Expired stale marketplace requests", extra={"expired_count": expired})
        return expired

    async def list_incoming(self, tenant_id: UUID, status: Optional[RequestStatus] = None) -> list[MarketplaceRequest]:
        """Requests where the tenant is the supplier, newest first."""
        return await self._list(MarketplaceRequest.supplier_tenant_id == tenant_id, status)

    async def list_outgoing(self, tenant_id: UUID, status: Optional[RequestStatus] = None) -> list[MarketplaceRequest]:
        """Requests the tenant sent, newest first."""
        return await self._list(MarketplaceRequest.requester_tenant_id == tenant_id, status)

    async def _list(self, condition, status: Optional[RequestStatus]) -> list[MarketplaceRequest]:
        stmt = select(MarketplaceRequest).where(condition)
        if status is not None:
            stmt = stmt.where(MarketplaceRequest.status == status)
        stmt = stmt.order_by(MarketplaceRequest.created_at.desc())
        try:
            result = await self.db.execute(stmt)
        except DBAPIError as e:
            raise StorageError("marketplace.list") from e
        return list(result.scalars().all())

    async def search_cars(self, tenant_id: UUID, request: SearchCarsRequest) -> list[MarketplaceCar]:
        """
        Marketplace-ready cars of other tenants that are free over the interval.

        Raises:
            ValidationError: If the interval is empty
        """
        start_at, end_at = as_naive_utc(request.start_at), as_naive_utc(request.end_at)
        if start_at >= end_at:
            raise ValidationError("start_at must be before end_at")

        busy_cars = select(Booking.car_id).where(
            Booking.start_at < end_at,
            Booking.end_at > start_at,
            Booking.status != BookingStatus.CANCELLED,
        )

        stmt = (
            select(Car, Company.name)
            .join(Company, Company.id == Car.tenant_id)
            .where(
                Car.is_marketplace_ready.is_(True),
                Car.tenant_id != tenant_id,
                Car.id.not_in(busy_cars),
            )
        )
        if request.category:
            stmt = stmt.where(Car.category == request.category)
        if request.query:
            pattern = f"%{request.query}%"
            stmt = stmt.where(or_(Car.brand.ilike(pattern), Car.model.ilike(pattern)))
        stmt = stmt.order_by(Car.price_per_day, Car.id)

        try:
            result = await self.db.execute(stmt)
        except DBAPIError as e:
            raise StorageError("marketplace.search") from e

        return [
            MarketplaceCar(
                id=str(car.id),
                tenant_id=str(car.tenant_id),
                company_name=company_name,
                brand=car.brand,
                model=car.model,
                category=car.category,
                price_per_day=car.price_per_day,
                driver_daily_salary=car.driver_daily_salary,
            )
            for car, company_name in result.all()
        ]

    async def load_for_conversion(self, request_id: UUID, side: str, tenant_id: UUID) -> MarketplaceRequest:
        """
        Check that ``tenant_id`` may turn an approved request into its booking.

        Raises:
            NotFoundError: If the request does not exist
            NotAuthorizedError: If the tenant is not the party for that side
            AlreadyResolvedError: If the request is not approved or that side was converted
        """
        request = await self.get_request(request_id)

        party = request.supplier_tenant_id if side == "SUPPLIER" else request.requester_tenant_id
        if party != tenant_id:
            raise NotAuthorizedError(
                detail=f"Only the {side.lower()} can convert this side of the request",
                acting_tenant_id=str(tenant_id),
            )

        if request.status != RequestStatus.APPROVED:
            raise AlreadyResolvedError(
                str(request_id),
                request.status,
                detail=f"Marketplace request {request_id} is {request.status}, only approved requests convert",
            )

        converted = request.supplier_booking_id if side == "SUPPLIER" else request.requester_booking_id
        if converted is not None:
            raise AlreadyResolvedError(
                str(request_id),
                request.status,
                detail=f"The {side.lower()} side of request {request_id} was already converted",
            )
        return request

    async def claim_conversion(self, request_id: UUID, side: str, booking_id: UUID) -> None:
        """
        Record ``booking_id`` as the conversion of one side, inside the caller's transaction.

        Raises:
            AlreadyResolvedError: If that side was converted concurrently
        """
        column = _CONVERSION_COLUMNS[side]
        result = await self.db.execute(
            update(MarketplaceRequest)
            .where(
                MarketplaceRequest.id == request_id,
                MarketplaceRequest.status == RequestStatus.APPROVED,
                column.is_(None),
            )
            .values({column: booking_id})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyResolvedError(
                str(request_id),
                RequestStatus.APPROVED,
                detail=f"The {side.lower()} side of request {request_id} was already converted",
            )

    async def ensure_partner_customer(self, supplier_tenant_id: UUID, requester_tenant_id: UUID) -> Customer:
        """
        The requesting company as a customer of the supplier, created on first use.

        Flushed but not committed; the caller's transaction owns it.
        """
        company = await self.db.get(Company, requester_tenant_id)
        if company is None:
            raise NotFoundError(resource_type="company", resource_id=str(requester_tenant_id))

        customer_name = f"{company.name}{PARTNER_CUSTOMER_SUFFIX}"
        result = await self.db.execute(
            select(Customer).where(
                and_(Customer.tenant_id == supplier_tenant_id, Customer.name == customer_name)
            ).limit(1)
        )
        customer = result.scalar_one_or_none()
        if customer is not None:
            return customer

        customer = Customer(
            tenant_id=supplier_tenant_id,
            name=customer_name,
            phone=company.phone,
            address=company.address,
        )
        self.db.add(customer)
        await self.db.flush()

        logger.info(
            "Created partner customer for marketplace conversion",
            extra={"customer_id": str(customer.id), "supplier_tenant_id": str(supplier_tenant_id)}
        )
        return customer
