from __future__ import annotations

from ..extensions import db


class BulkStock(db.Model):
    """
    Quantity counter for a non-serialized product held by one party.

    One row per (product, owner). More stock for an existing owner is
    merged into the row, never duplicated. Rows are only removed when the
    product itself is deleted.
    """
    __tablename__ = "bulk_stock"
    __table_args__ = (
        db.UniqueConstraint("product_id", "owner_id", name="uq_bulk_stock_product_owner"),
        db.CheckConstraint("quantity >= 0", name="ck_bulk_stock_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("bulk_stock", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<BulkStock product_id={self.product_id} owner_id={self.owner_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "owner_id": self.owner_id,
            "quantity": self.quantity,
            "version_id": self.version_id,
        }
