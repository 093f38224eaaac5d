"""
Serial allocator tests.

Verifies:
- Sequential allocation from range_start
- Exhaustion raises and allocates nothing
- Deleted units' serials are reused before fresh numbers
- Reservations block their numbers until released or expired
"""

from datetime import timedelta

import pytest

from chaintrack.models import SerialReservation, SerialSettings
from chaintrack.services import serial_service, unit_service
from chaintrack.services.serial_service import RangeExhaustedError
from chaintrack.time_utils import utcnow
from chaintrack.validation import ValidationError


class TestParseSerial:

    @pytest.mark.parametrize(
        "raw,expected",
        [("100000", 100000), (" 42 ", 42), ("SN-ABC", None), ("²", None), ("٣", None), (None, None)],
    )
    def test_parse(self, raw, expected):
        assert serial_service.parse_serial(raw) == expected


class TestSerialRange:

    def test_settings_seeded_from_config(self, db_session):
        settings = serial_service.load_serial_settings()
        assert settings.range_start == 100000
        assert settings.range_end == 100999
        assert settings.capacity == 1000

    def test_set_range(self, db_session, admin):
        settings = serial_service.set_serial_range(200000, 200009, actor_user_id=admin.id)
        assert (settings.range_start, settings.range_end) == (200000, 200009)
        assert serial_service.allocate_serials(1) == ["200000"]

    @pytest.mark.parametrize("start,end", [(10, 10), (10, 5)])
    def test_end_must_exceed_start(self, db_session, start, end):
        with pytest.raises(ValidationError, match="End range must be greater than start range"):
            serial_service.set_serial_range(start, end)

    @pytest.mark.parametrize("start,end", [(-1, 10), ("1", 10), (1, True)])
    def test_range_must_be_integers(self, db_session, start, end):
        with pytest.raises(ValidationError):
            serial_service.set_serial_range(start, end)


class TestAllocation:

    def test_sequential_then_exhausted(self, db_session):
        serial_service.set_serial_range(100000, 100002)
        assert serial_service.allocate_serials(3) == ["100000", "100001", "100002"]

        with pytest.raises(RangeExhaustedError) as exc:
            serial_service.allocate_serials(1)
        assert exc.value.details["requested"] == 1
        assert db_session.query(SerialReservation).count() == 3

    def test_exhaustion_allocates_nothing(self, db_session):
        serial_service.set_serial_range(100000, 100004)
        with pytest.raises(RangeExhaustedError):
            serial_service.allocate_serials(6)
        assert db_session.query(SerialReservation).count() == 0
        assert serial_service.allocate_serials(5) == ["100000", "100001", "100002", "100003", "100004"]

    def test_skips_live_units(self, db_session, serialized_product, producer):
        unit_service.produce_units(serialized_product.id, producer.id, 2)
        assert serial_service.allocate_serials(1) == ["100002"]

    @pytest.mark.parametrize("quantity", [0, -3, "2", 1.5, True])
    def test_invalid_quantity(self, db_session, quantity):
        with pytest.raises(ValidationError):
            serial_service.allocate_serials(quantity)

    def test_batch_cap(self, app, db_session):
        cap = app.config["MAX_SERIAL_BATCH"]
        with pytest.raises(ValidationError, match="Cannot allocate more than"):
            serial_service.allocate_serials(cap + 1)

    def test_release_frees_numbers(self, db_session):
        serials = serial_service.allocate_serials(2)
        assert serial_service.release_serials(serials) == 2
        assert serial_service.allocate_serials(2) == serials

    def test_reservation_records_producer(self, db_session, producer):
        serials = serial_service.allocate_serials(1, reserved_by=producer.id)
        assert db_session.get(SerialReservation, int(serials[0])).reserved_by == producer.id

    def test_release_only_own_reservations(self, db_session, producer, other_producer):
        serials = serial_service.allocate_serials(2, reserved_by=producer.id)

        assert serial_service.release_serials(serials, reserved_by=other_producer.id) == 0
        assert db_session.query(SerialReservation).count() == 2

        assert serial_service.release_serials(serials, reserved_by=producer.id) == 2
        assert db_session.query(SerialReservation).count() == 0

    def test_allocation_locks_settings_row(self, db_session, monkeypatch):
        locked = []
        original = serial_service.lock_for_update

        def recording_lock(query):
            locked.append(query.column_descriptions[0]["entity"])
            return original(query)

        monkeypatch.setattr(serial_service, "lock_for_update", recording_lock)
        serial_service.allocate_serials(1)
        assert SerialSettings in locked

    def test_expired_reservation_is_reused(self, db_session):
        assert serial_service.allocate_serials(1) == ["100000"]

        reservation = db_session.get(SerialReservation, 100000)
        reservation.expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()

        assert serial_service.allocate_serials(1) == ["100000"]


class TestReclaimPool:

    def test_deleted_serial_is_reused_first(self, db_session, serialized_product, producer):
        units = unit_service.produce_units(serialized_product.id, producer.id, 3)
        freed = unit_service.delete_unit(units[1].id, actor_user_id=producer.id)
        assert freed == "100001"
        assert serial_service.reclaimed_numbers() == [100001]

        replacement = unit_service.produce_units(serialized_product.id, producer.id, 2)
        assert [u.serial_number for u in replacement] == ["100001", "100003"]
        assert serial_service.reclaimed_numbers() == []

    def test_pool_drains_lowest_first(self, db_session, serialized_product, producer):
        units = unit_service.produce_units(serialized_product.id, producer.id, 4)
        unit_service.delete_unit(units[2].id)
        unit_service.delete_unit(units[0].id)
        assert serial_service.allocate_serials(2) == ["100000", "100002"]

    def test_exhaustion_keeps_pool(self, db_session, serialized_product, producer):
        serial_service.set_serial_range(100000, 100001)
        units = unit_service.produce_units(serialized_product.id, producer.id, 2)
        unit_service.delete_unit(units[0].id)

        with pytest.raises(RangeExhaustedError):
            serial_service.allocate_serials(2)
        assert serial_service.reclaimed_numbers() == [100000]

    def test_out_of_range_pool_entry_kept(self, db_session):
        serial_service.reclaim_serial("100500")
        serial_service.set_serial_range(100000, 100009)
        assert serial_service.allocate_serials(1) == ["100000"]
        assert serial_service.reclaimed_numbers() == [100500]

    def test_free_form_serial_ignored(self, db_session):
        assert serial_service.reclaim_serial("SN-ABC") is False
        assert serial_service.reclaimed_numbers() == []

    def test_live_serial_never_pooled(self, db_session, serialized_product, producer):
        unit = unit_service.produce_units(serialized_product.id, producer.id, 1)[0]
        assert serial_service.reclaim_serial(unit.serial_number) is False

    def test_duplicate_reclaim_ignored(self, db_session):
        assert serial_service.reclaim_serial("100500") is True
        assert serial_service.reclaim_serial("100500") is False
        assert serial_service.reclaimed_numbers() == [100500]


class TestUsage:

    def test_usage_counts(self, db_session, serialized_product, producer):
        serial_service.set_serial_range(100000, 100009)
        units = unit_service.produce_units(serialized_product.id, producer.id, 3)
        serial_service.allocate_serials(2)
        unit_service.delete_unit(units[0].id)

        usage = serial_service.serial_usage()
        assert usage["capacity"] == 10
        assert usage["used"] == 2
        assert usage["reserved"] == 2
        assert usage["reclaimed"] == [100000]
        assert usage["available"] == 6

    def test_narrowed_range_keeps_live_units(self, db_session, serialized_product, producer):
        unit_service.produce_units(serialized_product.id, producer.id, 3)
        serial_service.set_serial_range(100001, 100002)

        usage = serial_service.serial_usage()
        assert usage["used"] == 2
        assert usage["used_outside_range"] == 1
        assert usage["available"] == 0
        assert db_session.query(SerialReservation).count() == 0
