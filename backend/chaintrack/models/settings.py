from __future__ import annotations

from ..extensions import db
from chaintrack.time_utils import to_utc_z


class SerialSettings(db.Model):
    """
    The managed serial-number domain: a contiguous range [range_start, range_end].

    Single row (id=1). Seeded from config on first access. Narrowing the
    range never touches serials already assigned to live units.
    """
    __tablename__ = "serial_settings"
    __table_args__ = (
        db.CheckConstraint("range_end > range_start", name="ck_serial_settings_range"),
    )

    id = db.Column(db.Integer, primary_key=True)
    range_start = db.Column(db.Integer, nullable=False)
    range_end = db.Column(db.Integer, nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def capacity(self) -> int:
        return self.range_end - self.range_start + 1

    def to_dict(self) -> dict:
        return {
            "range_start": self.range_start,
            "range_end": self.range_end,
            "capacity": self.capacity,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class ReclaimedSerial(db.Model):
    """A serial number freed by unit deletion, reused before new numbers are issued."""
    __tablename__ = "reclaimed_serials"

    number = db.Column(db.Integer, primary_key=True, autoincrement=False)
    reclaimed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class SerialReservation(db.Model):
    """
    A serial number handed out by the allocator but not yet bound to a unit.

    reserved_by is the producer the number was handed to; only that producer
    can register or release it. Creating the unit consumes the reservation.
    Unconsumed reservations stop blocking the number once expires_at has
    passed.
    """
    __tablename__ = "serial_reservations"

    number = db.Column(db.Integer, primary_key=True, autoincrement=False)
    reserved_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    reserved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "reserved_by": self.reserved_by,
            "reserved_at": to_utc_z(self.reserved_at),
            "expires_at": to_utc_z(self.expires_at),
        }
