from __future__ import annotations

from ..extensions import db
from chaintrack.time_utils import to_utc_z


ROLE_PRODUCER = "PRODUCER"
ROLE_RESELLER = "RESELLER"
ROLE_BUYER = "BUYER"
ROLE_ADMIN = "ADMIN"

VALID_ROLES = {ROLE_PRODUCER, ROLE_RESELLER, ROLE_BUYER, ROLE_ADMIN}


class User(db.Model):
    """
    A party in the supply chain.

    Accounts, passwords and sessions are owned by the authentication layer.
    The engine only reads id + role and records references to users on
    units, stock rows and orders.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint(
            "role IN ('PRODUCER', 'RESELLER', 'BUYER', 'ADMIN')",
            name="ck_users_role",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    role = db.Column(db.String(16), nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
