"""Helpers shared by the write routers."""

import logging
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..services.idempotency_service import IdempotencyService

logger = logging.getLogger(__name__)


async def handle_idempotent_operation(
    method: str,
    tenant_id: UUID,
    idempotency_key: Optional[str],
    request_body: dict[str, Any],
    operation_func: Callable[[], Awaitable[dict[str, Any]]],
    db: AsyncSession,
) -> JSONResponse:
    """
    Run a write operation, replaying the stored response when the key was seen before.

    Without an Idempotency-Key header the operation simply runs. Retryable
    errors are not stored, so a retry with the same key runs again.
    """
    if not idempotency_key:
        return JSONResponse(status_code=200, content=await operation_func())

    idempotency_service = IdempotencyService(db)

    cached_response = await idempotency_service.check_idempotency(
        tenant_id=tenant_id,
        idempotency_key=idempotency_key,
        method=method,
        request_body=request_body,
    )
    if cached_response:
        status_code, response_body = cached_response
        return JSONResponse(status_code=status_code, content=response_body)

    try:
        response_dict = await operation_func()
    except ProblemDetailsException as e:
        if not e.retryable:
            await idempotency_service.store_response(
                tenant_id=tenant_id,
                idempotency_key=idempotency_key,
                method=method,
                request_body=request_body,
                status_code=e.status_code,
                response_body=e.problem_details,
            )
        raise

    await idempotency_service.store_response(
        tenant_id=tenant_id,
        idempotency_key=idempotency_key,
        method=method,
        request_body=request_body,
        status_code=200,
        response_body=response_dict,
    )
    return JSONResponse(status_code=200, content=response_dict)
