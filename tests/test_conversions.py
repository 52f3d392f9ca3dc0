"""
Tests for currency conversion, time labels and the exchange rate service.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from coperacha.aggregation import ExchangeRateService, amount_to_wei, time_since
from coperacha.aggregation.conversions import (
    local_to_native,
    native_to_local,
    parse_timestamp,
    to_int,
    wei_to_native,
)
from coperacha.models.audit import AuditEventType
from coperacha.models.finance import Amount
from coperacha.services.storage import InMemoryRecordStore, StorageError
from coperacha.validation import ValidationError

WEI = 10 ** 18
RATE = Decimal("80000")


class TestConversions:
    """wei / native / local."""

    @pytest.mark.parametrize("value,expected", [
        (42, 42),
        ("0x2a", 42),
        ("42", 42),
        ("", 0),
        (None, 0),
    ])
    def test_to_int(self, value, expected):
        assert to_int(value) == expected

    def test_wei_to_native(self):
        assert wei_to_native(WEI) == Decimal(1)
        assert wei_to_native(1) == Decimal("1E-18")

    def test_native_to_local_rounds_half_up_to_cents(self):
        assert native_to_local(Decimal("0.0000001"), RATE) == Decimal("0.01")
        assert native_to_local(Decimal("0.00000006"), RATE) == Decimal("0.00")
        assert native_to_local(Decimal("1.5"), RATE) == Decimal("120000.00")

    @pytest.mark.parametrize("native", ["0.123456", "1", "2.5", "0.00001"])
    def test_local_round_trip_is_within_a_cent(self, native):
        native = Decimal(native)
        back = local_to_native(native_to_local(native, RATE), RATE)
        assert abs(native_to_local(back, RATE) - native_to_local(native, RATE)) <= Decimal("0.01")

    def test_local_to_native_needs_positive_rate(self):
        with pytest.raises(ValueError):
            local_to_native(Decimal(1), Decimal(0))

    def test_amount_from_wei(self):
        amount = Amount.from_wei(WEI // 4, RATE)
        assert amount.native == Decimal("0.25")
        assert amount.local == Decimal("20000.00")

    @pytest.mark.parametrize("amount,unit,expected", [
        ("1", "eth", WEI),
        (" 0.5 ", "ETH", WEI // 2),
        ("80000", "hnl", WEI),
        ("7", "wei", 7),
        (0, "eth", 0),
    ])
    def test_amount_to_wei(self, amount, unit, expected):
        assert amount_to_wei(amount, unit, RATE) == expected

    def test_amount_to_wei_drops_sub_wei_fractions(self):
        assert amount_to_wei("0.0000000000000000019", "eth", RATE) == 1

    @pytest.mark.parametrize("amount,unit", [("-1", "eth"), ("x", "eth"), ("1", "btc"), ("0.5", "wei")])
    def test_amount_to_wei_rejects(self, amount, unit):
        with pytest.raises(ValueError):
            amount_to_wei(amount, unit, RATE)


class TestTimestamps:
    """Block timestamps and relative ages."""

    def test_parse_unix_hex_and_iso(self):
        expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        assert parse_timestamp(1_700_000_000) == expected
        assert parse_timestamp(hex(1_700_000_000)) == expected
        assert parse_timestamp("1700000000") == expected
        assert parse_timestamp("2023-11-14T22:13:20Z") == expected
        assert parse_timestamp(None) is None

    @pytest.mark.parametrize("delta,label", [
        (timedelta(seconds=0), "hace 0 segundos"),
        (timedelta(seconds=1), "hace 1 segundo"),
        (timedelta(minutes=1, seconds=30), "hace 1 minuto"),
        (timedelta(minutes=45), "hace 45 minutos"),
        (timedelta(hours=1), "hace 1 hora"),
        (timedelta(hours=23, minutes=59), "hace 23 horas"),
        (timedelta(days=1), "hace 1 día"),
        (timedelta(days=3, hours=5), "hace 3 días"),
    ])
    def test_time_since(self, delta, label):
        now = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
        assert time_since(now - delta, now) == label

    def test_future_moments_count_as_now(self):
        now = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
        assert time_since(now + timedelta(minutes=5), now) == "hace 0 segundos"


class BrokenRateStore(InMemoryRecordStore):
    async def get_exchange_rate(self):
        raise StorageError("sheet unavailable")


class TestExchangeRateService:
    """Stored rate with configured fallback."""

    @pytest.mark.asyncio
    async def test_fallback_when_missing(self):
        rates = ExchangeRateService(InMemoryRecordStore(), fallback=Decimal("75000"))
        assert await rates.get_rate() == Decimal("75000")

    @pytest.mark.asyncio
    async def test_fallback_when_non_positive(self):
        rates = ExchangeRateService(InMemoryRecordStore(exchange_rate=Decimal(0)), fallback=Decimal("75000"))
        assert await rates.get_rate() == Decimal("75000")

    @pytest.mark.asyncio
    async def test_fallback_when_store_fails(self):
        rates = ExchangeRateService(BrokenRateStore(), fallback=Decimal("75000"))
        assert await rates.get_rate() == Decimal("75000")

    @pytest.mark.asyncio
    async def test_default_fallback_from_settings(self):
        rates = ExchangeRateService(InMemoryRecordStore())
        assert rates.fallback > 0

    @pytest.mark.asyncio
    async def test_set_rate(self, audit_logger, audit_storage):
        store = InMemoryRecordStore()
        rates = ExchangeRateService(store, audit_logger, fallback=Decimal("75000"))

        stored = await rates.set_rate("81000.5")

        assert stored == Decimal("81000.5")
        assert await rates.get_rate() == Decimal("81000.5")
        events = await audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.EXCHANGE_RATE_UPDATED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["0", "-5", "abc", "NaN", "Infinity"])
    async def test_set_rate_rejects(self, value):
        store = InMemoryRecordStore()
        rates = ExchangeRateService(store, fallback=Decimal("75000"))

        with pytest.raises(ValidationError) as excinfo:
            await rates.set_rate(value)

        assert excinfo.value.field == "exchange_rate"
        assert await store.get_exchange_rate() is None
