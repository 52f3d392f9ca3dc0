"""
Exchange Rate Service

The native-to-local multiplier is a single mutable value kept in the
record store's configuration. When the store has no usable value the
configured fallback (ETH_TO_HNL, default 80000) applies.

Callers read the rate once per request and reuse it for every
conversion in that request, so a view never mixes two rates.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from coperacha.audit import AuditLogger
from coperacha.config import get_settings
from coperacha.services.storage import RecordStoreInterface, StorageError
from coperacha.validation import ValidationError

logger = structlog.get_logger(__name__)


class ExchangeRateService:
    """Read-through access to the exchange rate."""

    def __init__(
        self,
        store: RecordStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        fallback: Optional[Decimal] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._fallback = Decimal(str(
            fallback if fallback is not None else get_settings().app.fallback_exchange_rate
        ))

    @property
    def fallback(self) -> Decimal:
        return self._fallback

    async def get_rate(self) -> Decimal:
        """
        Current rate. Falls back when the stored value is missing,
        non-positive or unreadable.
        """
        try:
            rate = await self._store.get_exchange_rate()
        except StorageError as e:
            logger.warning("exchange_rate_read_failed", error=str(e))
            return self._fallback

        if rate is None or rate <= 0:
            return self._fallback
        return Decimal(rate)

    async def set_rate(self, value: Any) -> Decimal:
        """
        Store a new rate.

        Raises:
            ValidationError: If the value is not a positive number
            StorageError: If the store rejects the write
        """
        try:
            rate = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError("exchange_rate", f"Not a number: {value!r}")
        if not rate.is_finite() or rate <= 0:
            raise ValidationError("exchange_rate", "Exchange rate must be greater than zero")

        previous = await self.get_rate()
        await self._store.set_exchange_rate(rate)

        if self._audit_logger:
            await self._audit_logger.log_exchange_rate_updated(
                previous=str(previous),
                current=str(rate),
            )
        return rate
