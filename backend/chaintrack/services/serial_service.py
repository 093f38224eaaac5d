# Overview: Serial-number allocator over a bounded range with a reclaim pool.

"""
Serial Allocator

ALLOCATION ORDER (allocate_serials):
1. Build the in-use set: numeric serials of all live units plus unexpired
   reservations.
2. Drain the reclaim pool in ascending order. Pool entries that are in use
   (stale state) are dropped from the pool without being handed out.
   Entries outside the current range stay in the pool untouched.
3. Scan linearly from range_start, skipping in-use numbers.
4. Passing range_end raises RangeExhaustedError. Nothing is allocated: the
   transaction rolls back, pool included.

RESERVE-THEN-CONFIRM:
Every allocated number is stored as a SerialReservation owned by the
producer it was handed to. A unit can only be created with a number that
producer holds (require_reservations), and creating it consumes the
reservation. release_serials() gives numbers back. Reservations nobody
confirms stop blocking their number once they expire
(SERIAL_RESERVATION_TTL_SECONDS), so an abandoned allocation costs a
number for one TTL at most.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import ProductUnit, ReclaimedSerial, SerialReservation, SerialSettings
from chaintrack.time_utils import utcnow, utcnow_plus
from ..validation import ValidationError, StateConflictError
from .concurrency import lock_for_update, run_write
from .ledger_service import append_event


SETTINGS_ROW_ID = 1


class RangeExhaustedError(ValidationError):
    """The serial range cannot satisfy the request. Nothing was allocated."""


def parse_serial(serial_number: str | None) -> int | None:
    """Numeric value of a managed serial, None for free-form serials."""
    if serial_number is None:
        return None
    s = str(serial_number).strip()
    if not (s.isascii() and s.isdigit()):
        return None
    return int(s)


def get_serial_settings() -> SerialSettings:
    """
    Lock and load the settings row, seeding it from config on first access.

    Writers serialize on this row lock. Caller commits.
    """
    settings = lock_for_update(db.session.query(SerialSettings).filter_by(id=SETTINGS_ROW_ID)).first()
    if settings is None:
        settings = SerialSettings(
            id=SETTINGS_ROW_ID,
            range_start=current_app.config["SERIAL_RANGE_START"],
            range_end=current_app.config["SERIAL_RANGE_END"],
        )
        db.session.add(settings)
        db.session.flush()
    return settings


def set_serial_range(range_start: int, range_end: int, *, actor_user_id: int | None = None) -> SerialSettings:
    """
    Replace the managed range.

    Live units outside a narrowed range keep their serials; they simply no
    longer count against capacity.
    """
    for name, value in (("range_start", range_start), ("range_end", range_end)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{name} must be a non-negative integer")
    if range_end <= range_start:
        raise ValidationError("End range must be greater than start range")

    def _op():
        settings = get_serial_settings()
        previous = (settings.range_start, settings.range_end)
        settings.range_start = range_start
        settings.range_end = range_end

        append_event(
            event_type="serials.range_changed",
            entity_type="serial_settings",
            entity_id=settings.id,
            actor_user_id=actor_user_id,
            payload={"previous": list(previous), "current": [range_start, range_end]},
        )
        return settings

    return run_write(_op)


def _live_numbers() -> set[int]:
    used: set[int] = set()
    for (serial,) in db.session.query(ProductUnit.serial_number).all():
        num = parse_serial(serial)
        if num is not None:
            used.add(num)
    return used


def _reserved_numbers(now) -> set[int]:
    rows = db.session.query(SerialReservation.number).filter(SerialReservation.expires_at > now).all()
    return {n for (n,) in rows}


def _purge_expired_reservations(now) -> None:
    db.session.query(SerialReservation).filter(SerialReservation.expires_at <= now).delete(
        synchronize_session="fetch"
    )


def allocate_serials(quantity: int, *, reserved_by: int | None = None, commit: bool = True) -> list[str]:
    """
    Reserve `quantity` serial numbers for producer `reserved_by` and return
    them as strings.

    Raises:
        ValidationError: quantity not a positive integer or above MAX_SERIAL_BATCH
        RangeExhaustedError: the range cannot supply enough numbers
    """
    max_batch = current_app.config["MAX_SERIAL_BATCH"]
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    if quantity > max_batch:
        raise ValidationError(f"Cannot allocate more than {max_batch} serials at once")

    def _op():
        now = utcnow()
        settings = get_serial_settings()
        _purge_expired_reservations(now)
        used = _live_numbers() | _reserved_numbers(now)

        generated: list[int] = []

        # 1. Reclaimed numbers first, lowest first
        pool = db.session.query(ReclaimedSerial).order_by(ReclaimedSerial.number.asc()).all()
        for entry in pool:
            if len(generated) >= quantity:
                break
            # Kept for a later widening of the range
            if not settings.range_start <= entry.number <= settings.range_end:
                continue
            db.session.delete(entry)
            if entry.number in used:
                continue
            generated.append(entry.number)
            used.add(entry.number)

        # 2. Fresh numbers from the start of the range
        candidate = settings.range_start
        while len(generated) < quantity:
            if candidate > settings.range_end:
                current_app.logger.warning(
                    "Serial range [%s, %s] exhausted (requested %s)",
                    settings.range_start, settings.range_end, quantity,
                )
                raise RangeExhaustedError(
                    "Serial number range exhausted. Please contact Admin.",
                    details={
                        "requested": quantity,
                        "range_start": settings.range_start,
                        "range_end": settings.range_end,
                    },
                )
            if candidate not in used:
                generated.append(candidate)
                used.add(candidate)
            candidate += 1

        expires_at = utcnow_plus(current_app.config["SERIAL_RESERVATION_TTL_SECONDS"])
        for number in generated:
            db.session.add(SerialReservation(
                number=number,
                reserved_by=reserved_by,
                reserved_at=now,
                expires_at=expires_at,
            ))
        db.session.flush()

        return [str(n) for n in generated]

    return run_write(_op, commit=commit)


def require_reservations(serial_numbers: list[str], reserved_by: int) -> None:
    """
    Check that every serial may become a new unit's serial for `reserved_by`.

    A serial qualifies when it is numeric, not on a live unit, inside the
    current range and held by an unexpired reservation of that producer.

    Raises:
        StateConflictError: a serial is already on a live unit
        ValidationError: any other serial fails; details lists them all
    """
    settings = get_serial_settings()
    now = utcnow()
    live = _live_numbers()

    numbers = [parse_serial(s) for s in serial_numbers]
    taken = [s for s, n in zip(serial_numbers, numbers) if n is not None and n in live]
    if taken:
        raise StateConflictError(
            f"Serial number {taken[0]} is already in use",
            details={"serials": taken},
        )

    reservations = {}
    valid = [n for n in numbers if n is not None]
    if valid:
        rows = db.session.query(SerialReservation).filter(SerialReservation.number.in_(valid)).all()
        reservations = {r.number: r for r in rows}

    invalid = []
    for serial, num in zip(serial_numbers, numbers):
        reservation = reservations.get(num)
        if (
            num is None
            or not settings.range_start <= num <= settings.range_end
            or reservation is None
            or reservation.expires_at <= now
            or reservation.reserved_by != reserved_by
        ):
            invalid.append(serial)
    if invalid:
        raise ValidationError(
            f"Serials not reserved by this producer: {', '.join(invalid)}",
            details={"serials": invalid},
        )


def consume_reservation(serial_number: str) -> None:
    """
    Bind a checked serial to a unit being created in the current transaction.

    Run require_reservations() first. Caller commits.
    """
    num = parse_serial(serial_number)
    if num is None:
        raise ValidationError(f"Serial number {serial_number} is not numeric")

    reservation = db.session.get(SerialReservation, num)
    if reservation is not None:
        db.session.delete(reservation)
    # A number coming straight from the pool is no longer reclaimable
    pooled = db.session.get(ReclaimedSerial, num)
    if pooled is not None:
        db.session.delete(pooled)


def release_serials(serial_numbers: list[str], *, reserved_by: int | None = None, commit: bool = True) -> int:
    """
    Drop reservations for numbers the caller decided not to use.

    Only reservations held by `reserved_by` are released; other numbers are
    ignored. Returns count released.
    """
    numbers = [n for n in (parse_serial(s) for s in serial_numbers) if n is not None]

    def _op():
        if not numbers:
            return 0
        return (
            db.session.query(SerialReservation)
            .filter(
                SerialReservation.number.in_(numbers),
                SerialReservation.reserved_by == reserved_by,
            )
            .delete(synchronize_session="fetch")
        )

    return run_write(_op, commit=commit)


def reclaim_serial(serial_number: str, *, commit: bool = True) -> bool:
    """
    Return a serial number to the reclaim pool.

    Free-form (non-numeric) serials are ignored. Numbers still carried by a
    live unit are never pooled. Returns True when the pool gained the number.
    """
    num = parse_serial(serial_number)

    def _op():
        if num is None:
            return False
        if db.session.get(ReclaimedSerial, num) is not None:
            return False
        if num in _live_numbers():
            return False
        db.session.add(ReclaimedSerial(number=num, reclaimed_at=utcnow()))
        db.session.flush()
        return True

    return run_write(_op, commit=commit)


def reclaimed_numbers() -> list[int]:
    return [n for (n,) in db.session.query(ReclaimedSerial.number).order_by(ReclaimedSerial.number.asc()).all()]


def load_serial_settings() -> SerialSettings:
    """Read path: settings row, seeded and committed if missing."""
    settings = db.session.get(SerialSettings, SETTINGS_ROW_ID)
    if settings is None:
        settings = run_write(get_serial_settings)
    return settings


def serial_usage() -> dict:
    """Capacity figures for the admin view."""
    settings = load_serial_settings()
    live = _live_numbers()
    in_range = sum(1 for n in live if settings.range_start <= n <= settings.range_end)
    reserved = {
        n for n in _reserved_numbers(utcnow()) - live
        if settings.range_start <= n <= settings.range_end
    }
    return {
        **settings.to_dict(),
        "used": in_range,
        "used_outside_range": len(live) - in_range,
        "reserved": len(reserved),
        "reclaimed": reclaimed_numbers(),
        "available": max(0, settings.capacity - in_range - len(reserved)),
    }
