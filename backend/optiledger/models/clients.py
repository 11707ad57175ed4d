from __future__ import annotations

from ..extensions import db
from optiledger.time_utils import to_utc_z


class Customer(db.Model):
    """
    Registered customer (a user account with the customer role).

    total_debt_cents is a cache of the debt aggregator's live computation.
    It may lag behind order data and is rewritten by recalculation.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    cpf = db.Column(db.String(14), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    total_debt_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "cpf": self.cpf,
            "is_active": self.is_active,
            "total_debt_cents": self.total_debt_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LegacyClient(db.Model):
    """Client imported from the previous system, without a login."""
    __tablename__ = "legacy_clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    cpf = db.Column(db.String(14), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)  # active, inactive
    total_debt_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "cpf": self.cpf,
            "phone": self.phone,
            "status": self.status,
            "total_debt_cents": self.total_debt_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
