"""Initial ChainTrack schema: parties, catalog, unit and bulk ledgers, orders, serials

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial"
down_revision = None
branch_labels = None
depends_on = None


UNIT_STATUSES = (
    "'IN_FACTORY', 'IN_TRANSIT_TO_SELLER', 'AT_SELLER', 'SOLD_TO_BUYER', "
    "'RETURN_REQUESTED', 'RETURNED_TO_SELLER', 'RETURNED_DEFECTIVE'"
)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("role IN ('PRODUCER', 'RESELLER', 'BUYER', 'ADMIN')", name="ck_users_role"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_email", ["email"], unique=True)
        batch_op.create_index("ix_users_role", ["role"], unique=False)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("producer_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("images", sa.JSON(), nullable=False),
        sa.Column("is_serialized", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["producer_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_producer_id", ["producer_id"], unique=False)
        batch_op.create_index("ix_products_producer_name", ["producer_id", "name"], unique=False)

    op.create_table(
        "product_units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("serial_number", sa.String(64), nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("producer_id", sa.Integer(), nullable=False),
        sa.Column("reseller_id", sa.Integer(), nullable=True),
        sa.Column("buyer_id", sa.Integer(), nullable=True),
        sa.Column("auth_code", sa.String(64), nullable=False),
        sa.Column("manufactured_on", sa.Date(), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint(f"status IN ({UNIT_STATUSES})", name="ck_units_status"),
        sa.CheckConstraint(
            "status != 'IN_FACTORY' OR (reseller_id IS NULL AND buyer_id IS NULL)",
            name="ck_units_factory_unowned",
        ),
        sa.CheckConstraint("status = 'IN_FACTORY' OR reseller_id IS NOT NULL", name="ck_units_reseller_ref"),
        sa.CheckConstraint(
            "status NOT IN ('SOLD_TO_BUYER', 'RETURN_REQUESTED') OR buyer_id IS NOT NULL",
            name="ck_units_buyer_ref",
        ),
        sa.CheckConstraint("status != 'AT_SELLER' OR buyer_id IS NULL", name="ck_units_at_seller_no_buyer"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["producer_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["reseller_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("product_units", schema=None) as batch_op:
        batch_op.create_index("ix_product_units_serial_number", ["serial_number"], unique=True)
        batch_op.create_index("ix_product_units_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_product_units_status", ["status"], unique=False)
        batch_op.create_index("ix_product_units_producer_id", ["producer_id"], unique=False)
        batch_op.create_index("ix_product_units_reseller_id", ["reseller_id"], unique=False)
        batch_op.create_index("ix_product_units_buyer_id", ["buyer_id"], unique=False)
        batch_op.create_index("ix_units_product_reseller_status", ["product_id", "reseller_id", "status"], unique=False)

    op.create_table(
        "bulk_stock",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("quantity >= 0", name="ck_bulk_stock_quantity_non_negative"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "owner_id", name="uq_bulk_stock_product_owner"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("bulk_stock", schema=None) as batch_op:
        batch_op.create_index("ix_bulk_stock_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_bulk_stock_owner_id", ["owner_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("seller_id", sa.Integer(), nullable=False),
        sa.Column("buyer_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("ordered_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("return_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("quantity > 0", name="ck_orders_quantity_positive"),
        sa.CheckConstraint(
            "status IN ('AWAITING_CONFIRMATION', 'CONFIRMED', 'DELIVERED', 'RETURN_REQUESTED', 'RETURNED')",
            name="ck_orders_status",
        ),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["seller_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_seller_status", ["seller_id", "status"], unique=False)
        batch_op.create_index("ix_orders_buyer_status", ["buyer_id", "status"], unique=False)

    op.create_table(
        "order_units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=True),
        sa.Column("serial_number", sa.String(64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["product_units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", "unit_id", name="uq_order_units_order_unit"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_units", schema=None) as batch_op:
        batch_op.create_index("ix_order_units_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_units_unit_id", ["unit_id"], unique=False)

    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("seller_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_ids", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["seller_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cart_items", schema=None) as batch_op:
        batch_op.create_index("ix_cart_items_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_cart_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "serial_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("range_start", sa.Integer(), nullable=False),
        sa.Column("range_end", sa.Integer(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("range_end > range_start", name="ck_serial_settings_range"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "reclaimed_serials",
        sa.Column("number", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("reclaimed_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("number"),
    )

    op.create_table(
        "serial_reservations",
        sa.Column("number", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("reserved_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reserved_by", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["reserved_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("number"),
    )
    with op.batch_alter_table("serial_reservations", schema=None) as batch_op:
        batch_op.create_index("ix_serial_reservations_expires_at", ["expires_at"], unique=False)
        batch_op.create_index("ix_serial_reservations_reserved_by", ["reserved_by"], unique=False)

    op.create_table(
        "ledger_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ledger_events", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_ledger_events_actor_user_id", ["actor_user_id"], unique=False)
        batch_op.create_index("ix_ledger_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_ledger_events_entity", ["entity_type", "entity_id"], unique=False)


def downgrade():
    op.drop_table("ledger_events")
    op.drop_table("serial_reservations")
    op.drop_table("reclaimed_serials")
    op.drop_table("serial_settings")
    op.drop_table("cart_items")
    op.drop_table("order_units")
    op.drop_table("orders")
    op.drop_table("bulk_stock")
    op.drop_table("product_units")
    op.drop_table("products")
    op.drop_table("users")
