"""Idempotency service for replaying responses of retried write requests."""

import hashlib
import json
import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import ProblemDetailsException
from ..models.idempotency import IdempotencyRecord

logger = logging.getLogger(__name__)


class IdempotencyMismatchError(ProblemDetailsException):
    """Exception when idempotency key is reused with different request body."""

    code = "IDEMPOTENCY_KEY_MISMATCH"

    def __init__(self, idempotency_key: str, method: str):
        super().__init__(
            status_code=422,
            title="Idempotency Key Mismatch",
            detail=f"Idempotency key '{idempotency_key}' was already used for '{method}' with a different request body",
            type_uri="https://fleetdesk.dev/problems/idempotency-key-mismatch",
            extensions={
                "idempotency_key": idempotency_key,
                "method": method,
            },
        )


class IdempotencyService:
    """Stores and replays responses keyed by (tenant, Idempotency-Key, operation)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _compute_request_hash(self, request_body: dict[str, Any]) -> str:
        """Compute SHA-256 hash of normalized request body."""
        normalized = json.dumps(request_body, sort_keys=True, separators=(',', ':'), default=str)
        return hashlib.sha256(normalized.encode('utf-8')).hexdigest()

    async def check_idempotency(
        self,
        tenant_id: UUID,
        idempotency_key: str,
        method: str,
        request_body: dict[str, Any],
    ) -> tuple[int, dict[str, Any]] | None:
        """
        Look up a stored response for this key.

        Returns:
            (status_code, response_body) if a live record exists, None otherwise

        Raises:
            IdempotencyMismatchError: If key exists with different request body
        """
        request_hash = self._compute_request_hash(request_body)

        result = await self.db.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.tenant_id == tenant_id,
                IdempotencyRecord.idempotency_key == idempotency_key,
                IdempotencyRecord.method == method,
                IdempotencyRecord.expires_at > utcnow(),
            )
        )
        existing_record = result.scalar_one_or_none()

        if existing_record is None:
            return None

        if existing_record.request_body_hash != request_hash:
            logger.warning(
                "Idempotency key mismatch",
                extra={
                    "idempotency_key": idempotency_key,
                    "method": method,
                    "existing_hash": existing_record.request_body_hash[:8],
                    "new_hash": request_hash[:8]
                }
            )
            raise IdempotencyMismatchError(idempotency_key, method)

        logger.info(
            "Returning cached idempotent response",
            extra={
                "idempotency_key": idempotency_key,
                "method": method,
                "status_code": existing_record.response_status_code,
            }
        )
        return existing_record.response_status_code, json.loads(existing_record.response_body)

    async def store_response(
        self,
        tenant_id: UUID,
        idempotency_key: str,
        method: str,
        request_body: dict[str, Any],
        status_code: int,
        response_body: dict[str, Any],
    ) -> None:
        """Store a response so a retry with the same key replays it."""
        expires_at = utcnow() + timedelta(hours=settings.idempotency_ttl_hours)

        record = IdempotencyRecord(
            tenant_id=tenant_id,
            idempotency_key=idempotency_key,
            method=method,
            request_body_hash=self._compute_request_hash(request_body),
            response_status_code=status_code,
            response_body=json.dumps(response_body, sort_keys=True, separators=(',', ':'), default=str),
            expires_at=expires_at,
        )

        try:
            # An expired record would still hold the unique (tenant, key, method) slot
            await self.db.execute(
                delete(IdempotencyRecord).where(
                    IdempotencyRecord.tenant_id == tenant_id,
                    IdempotencyRecord.idempotency_key == idempotency_key,
                    IdempotencyRecord.method == method,
                    IdempotencyRecord.expires_at <= utcnow(),
                )
            )
            self.db.add(record)
            await self.db.commit()
        except IntegrityError as e:
            # A concurrent request with the same key stored its response first
            await self.db.rollback()
            logger.info(
                "Idempotency record already exists (race condition)",
                extra={"idempotency_key": idempotency_key, "method": method, "error": str(e)}
            )
            return

        logger.info(
            "Stored idempotency record",
            extra={
                "idempotency_key": idempotency_key,
                "method": method,
                "status_code": status_code,
                "expires_at": expires_at.isoformat()
            }
        )
