"""Audit trail of external ledger calls."""

import json
import logging
import time
from typing import Any, Callable, TypeVar

from pydantic import BaseModel

from .db import Database
from .models import APICall

logger = logging.getLogger(__name__)

T = TypeVar("T")


def to_json(value: Any) -> str:
    """Serialize a request or response payload, including pydantic models."""
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    if isinstance(value, list):
        return json.dumps(
            [
                v.model_dump(mode="json") if isinstance(v, BaseModel) else v
                for v in value
            ],
            default=str,
        )
    return json.dumps(value, default=str)


class AuditLog:
    """
    Records every ledger call made while processing an order.

    Recording is best-effort: a failure to store the record is logged and
    never interrupts the sync.
    """

    def __init__(self, database: Database | None, run_id: int | None = None):
        """Initialize the audit log."""
        self.db = database
        self.run_id = run_id

    def log_api_call(
        self,
        order_id: str,
        method: str,
        request: Any,
        response: Any = None,
        error: Exception | None = None,
        duration_ms: int = 0,
    ) -> None:
        """Store one API call. Never raises."""
        if self.db is None or self.run_id is None:
            return

        try:
            self.db.log_api_call(
                APICall(
                    run_id=self.run_id,
                    order_id=order_id,
                    method=method,
                    request_json=to_json(request),
                    response_json=to_json(response),
                    error=str(error) if error else None,
                    duration_ms=duration_ms,
                )
            )
        except Exception as e:
            logger.warning(f"Failed to log API call {method} for order {order_id}: {e}")

    def call(
        self,
        order_id: str,
        method: str,
        request: Any,
        func: Callable[..., T],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Run ``func(*args, **kwargs)`` and record it.

        Exceptions from ``func`` are recorded and then re-raised.
        """
        start = time.monotonic()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.log_api_call(
                order_id,
                method,
                request,
                error=e,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            raise

        self.log_api_call(
            order_id,
            method,
            request,
            response=result,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        return result
