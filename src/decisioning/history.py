"""Append-only decision history keyed by request id."""

import logging
import threading
from typing import Dict, List, Optional, Set

from ..errors import ValidationError
from .schema import DecisionResult

logger = logging.getLogger(__name__)


class DecisionHistory:
    """Thread-safe append-only log of decision results."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_request: Dict[str, DecisionResult] = {}
        self._order: List[str] = []
        self._reserved: Set[str] = set()

    def reserve(self, request_id: str) -> None:
        """
        Claim a request id before it is decided.

        Raises:
            ValidationError: id already recorded or claimed by an in-flight request
        """
        with self._lock:
            if request_id in self._by_request or request_id in self._reserved:
                raise ValidationError(f"Decision already recorded for request {request_id}")
            self._reserved.add(request_id)

    def release(self, request_id: str) -> None:
        """Drop a claim whose decision was never recorded."""
        with self._lock:
            self._reserved.discard(request_id)

    def append(self, result: DecisionResult) -> None:
        """Record a result; a request id can only be recorded once."""
        with self._lock:
            if result.request_id in self._by_request:
                raise ValidationError(f"Decision already recorded for request {result.request_id}")
            self._reserved.discard(result.request_id)
            self._by_request[result.request_id] = result
            self._order.append(result.request_id)

    def get(self, request_id: str) -> Optional[DecisionResult]:
        with self._lock:
            return self._by_request.get(request_id)

    def for_customer(self, customer_id: str, tenant_id: str) -> List[DecisionResult]:
        with self._lock:
            return [
                self._by_request[rid] for rid in self._order
                if self._by_request[rid].customer_id == customer_id
                and self._by_request[rid].tenant_id == tenant_id
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)
