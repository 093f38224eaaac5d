from __future__ import annotations

from ..extensions import db
from chaintrack.time_utils import to_utc_z


class Product(db.Model):
    """
    Product definition owned by a producer.

    INVENTORY MODE:
    is_serialized is fixed at creation and decides which ledger governs the
    product's stock forever:
    - True:  one ProductUnit row per physical item (unit ledger)
    - False: one BulkStock counter per owning party (bulk ledger)

    Only metadata (name, description, images) may change afterwards.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_producer_name", "producer_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    producer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    images = db.Column(db.JSON, nullable=False, default=list)

    is_serialized = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    producer = db.relationship("User", foreign_keys=[producer_id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} serialized={self.is_serialized}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "producer_id": self.producer_id,
            "name": self.name,
            "description": self.description,
            "images": list(self.images or []),
            "is_serialized": self.is_serialized,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
