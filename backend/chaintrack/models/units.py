from __future__ import annotations

from ..extensions import db
from chaintrack.time_utils import to_utc_z, to_iso_date


UNIT_IN_FACTORY = "IN_FACTORY"
UNIT_IN_TRANSIT_TO_SELLER = "IN_TRANSIT_TO_SELLER"
UNIT_AT_SELLER = "AT_SELLER"
UNIT_SOLD_TO_BUYER = "SOLD_TO_BUYER"
UNIT_RETURN_REQUESTED = "RETURN_REQUESTED"
UNIT_RETURNED_TO_SELLER = "RETURNED_TO_SELLER"
UNIT_RETURNED_DEFECTIVE = "RETURNED_DEFECTIVE"

UNIT_STATUSES = (
    UNIT_IN_FACTORY,
    UNIT_IN_TRANSIT_TO_SELLER,
    UNIT_AT_SELLER,
    UNIT_SOLD_TO_BUYER,
    UNIT_RETURN_REQUESTED,
    UNIT_RETURNED_TO_SELLER,
    UNIT_RETURNED_DEFECTIVE,
)

# Statuses in which a unit sits in a reseller's sellable stock
SELLABLE_STATUSES = (UNIT_AT_SELLER, UNIT_RETURNED_TO_SELLER)

# Owner references each status requires to be set (reseller / buyer)
REQUIRED_REFS = {
    UNIT_IN_FACTORY: (),
    UNIT_IN_TRANSIT_TO_SELLER: ("reseller_id",),
    UNIT_AT_SELLER: ("reseller_id",),
    UNIT_SOLD_TO_BUYER: ("reseller_id", "buyer_id"),
    UNIT_RETURN_REQUESTED: ("reseller_id", "buyer_id"),
    UNIT_RETURNED_TO_SELLER: ("reseller_id",),
    UNIT_RETURNED_DEFECTIVE: ("reseller_id",),
}


def _in_list(statuses) -> str:
    return ", ".join(f"'{s}'" for s in statuses)


class ProductUnit(db.Model):
    """
    One physical item of a serialized product.

    LIFECYCLE:
        IN_FACTORY -> AT_SELLER -> SOLD_TO_BUYER -> RETURN_REQUESTED
            -> RETURNED_TO_SELLER (accepted) | SOLD_TO_BUYER (declined)
        AT_SELLER / RETURNED_TO_SELLER -> RETURNED_DEFECTIVE (terminal)
        SOLD_TO_BUYER -> AT_SELLER (order cancelled)

    Transitions live in services/unit_service.py. The CHECK constraints
    below keep status and owner references from contradicting each other
    even if a write bypasses the service layer.

    auth_code is the SHA-256 authenticity digest bound to serial + producer,
    computed once when the unit is produced.
    """
    __tablename__ = "product_units"
    __table_args__ = (
        db.CheckConstraint(f"status IN ({_in_list(UNIT_STATUSES)})", name="ck_units_status"),
        db.CheckConstraint(
            f"status != '{UNIT_IN_FACTORY}' OR (reseller_id IS NULL AND buyer_id IS NULL)",
            name="ck_units_factory_unowned",
        ),
        db.CheckConstraint(
            f"status = '{UNIT_IN_FACTORY}' OR reseller_id IS NOT NULL",
            name="ck_units_reseller_ref",
        ),
        db.CheckConstraint(
            f"status NOT IN ('{UNIT_SOLD_TO_BUYER}', '{UNIT_RETURN_REQUESTED}') OR buyer_id IS NOT NULL",
            name="ck_units_buyer_ref",
        ),
        db.CheckConstraint(
            f"status != '{UNIT_AT_SELLER}' OR buyer_id IS NULL",
            name="ck_units_at_seller_no_buyer",
        ),
        db.Index("ix_units_product_reseller_status", "product_id", "reseller_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    serial_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    status = db.Column(db.String(24), nullable=False, default=UNIT_IN_FACTORY, index=True)

    producer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reseller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    auth_code = db.Column(db.String(64), nullable=False)

    manufactured_on = db.Column(db.Date, nullable=False)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("units", lazy=True, order_by="ProductUnit.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<ProductUnit id={self.id} serial={self.serial_number!r} status={self.status}>"

    def to_dict(self, *, include_auth_code: bool = False) -> dict:
        data = {
            "id": self.id,
            "product_id": self.product_id,
            "serial_number": self.serial_number,
            "status": self.status,
            "producer_id": self.producer_id,
            "reseller_id": self.reseller_id,
            "buyer_id": self.buyer_id,
            "manufactured_on": to_iso_date(self.manufactured_on),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "sold_at": to_utc_z(self.sold_at),
            "returned_at": to_utc_z(self.returned_at),
            "version_id": self.version_id,
        }
        # The code is a bearer secret: only the owning buyer / producer sees it
        if include_auth_code:
            data["auth_code"] = self.auth_code
        return data
