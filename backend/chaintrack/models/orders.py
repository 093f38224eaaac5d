from __future__ import annotations

from ..extensions import db
from chaintrack.time_utils import to_utc_z


ORDER_AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
ORDER_CONFIRMED = "CONFIRMED"
ORDER_DELIVERED = "DELIVERED"
ORDER_RETURN_REQUESTED = "RETURN_REQUESTED"
ORDER_RETURNED = "RETURNED"

ORDER_STATUS_LABELS = {
    ORDER_AWAITING_CONFIRMATION: "Awaiting Confirmation",
    ORDER_CONFIRMED: "Confirmed",
    ORDER_DELIVERED: "Delivered",
    ORDER_RETURN_REQUESTED: "Return Requested",
    ORDER_RETURNED: "Returned",
}


class Order(db.Model):
    """
    One purchased line item.

    Created at checkout (one per cart line). Serialized orders record the
    exact units reserved for them in order_units. Orders are deleted on
    cancellation and kept on completion.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_orders_quantity_positive"),
        db.CheckConstraint(
            "status IN ('AWAITING_CONFIRMATION', 'CONFIRMED', 'DELIVERED', 'RETURN_REQUESTED', 'RETURNED')",
            name="ck_orders_status",
        ),
        db.Index("ix_orders_seller_status", "seller_id", "status"),
        db.Index("ix_orders_buyer_status", "buyer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(24), nullable=False, default=ORDER_AWAITING_CONFIRMATION, index=True)

    ordered_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("orders", lazy=True))
    reserved = db.relationship(
        "OrderUnit",
        order_by="OrderUnit.position",
        cascade="all, delete-orphan",
        lazy=True,
        back_populates="order",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def reserved_unit_ids(self) -> list[int]:
        return [r.unit_id for r in self.reserved if r.unit_id is not None]

    def __repr__(self) -> str:
        return f"<Order id={self.id} product_id={self.product_id} qty={self.quantity} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "seller_id": self.seller_id,
            "buyer_id": self.buyer_id,
            "quantity": self.quantity,
            "status": self.status,
            "status_label": ORDER_STATUS_LABELS.get(self.status, self.status),
            "reserved_unit_ids": self.reserved_unit_ids,
            "reserved_serials": [r.serial_number for r in self.reserved],
            "ordered_at": to_utc_z(self.ordered_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "return_requested_at": to_utc_z(self.return_requested_at),
            "returned_at": to_utc_z(self.returned_at),
            "version_id": self.version_id,
        }


class OrderUnit(db.Model):
    """
    A unit reserved for an order. position keeps the FIFO assignment order.

    serial_number is copied at reservation; unit_id is cleared if the unit
    is later deleted, so completed orders keep their history.
    """
    __tablename__ = "order_units"
    __table_args__ = (
        db.UniqueConstraint("order_id", "unit_id", name="uq_order_units_order_unit"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("product_units.id"), nullable=True, index=True)
    serial_number = db.Column(db.String(64), nullable=False)
    position = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="reserved")
    unit = db.relationship("ProductUnit")


class CartItem(db.Model):
    """
    A pending selection in a user's cart.

    Buyers check out their cart into orders. unit_ids pins the exact units
    picked from the seller's shelf.
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_ids = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "is_serialized": self.product.is_serialized if self.product else None,
            "seller_id": self.seller_id,
            "quantity": self.quantity,
            "unit_ids": list(self.unit_ids or []),
            "created_at": to_utc_z(self.created_at),
        }
