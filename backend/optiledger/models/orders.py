from __future__ import annotations

from ..extensions import db
from optiledger.time_utils import to_utc_z


class Order(db.Model):
    """
    Optical order as seen by the settlement core.

    Only the pricing and payment fields are modelled here; lens, frame and
    laboratory data belong to the order collaborator.

    payment_status is a stored copy of what the resolver derives from
    payment_entry_cents and the payment history. It is refreshed after every
    payment that touches the order.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        db.Index("ix_orders_legacy_client_status", "legacy_client_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    legacy_client_id = db.Column(db.Integer, db.ForeignKey("legacy_clients.id"), nullable=True)

    # pending, in_production, ready, delivered, cancelled
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    total_price_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    final_price_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_entry_cents = db.Column(db.Integer, nullable=False, default=0)  # down payment at order time

    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    payment_history = db.relationship(
        "OrderPaymentEntry",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderPaymentEntry.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "legacy_client_id": self.legacy_client_id,
            "status": self.status,
            "total_price_cents": self.total_price_cents,
            "discount_cents": self.discount_cents,
            "final_price_cents": self.final_price_cents,
            "payment_entry_cents": self.payment_entry_cents,
            "payment_status": self.payment_status,
            "payment_history": [e.to_dict() for e in self.payment_history],
            "is_deleted": self.is_deleted,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class OrderPaymentEntry(db.Model):
    """
    One counted payment (or the share of a debt payment) applied to an order.

    A payment can have several entries when a debt payment is spread across
    orders; cancelling the payment removes all of them.
    """
    __tablename__ = "order_payment_entries"
    __table_args__ = (
        db.UniqueConstraint("order_id", "payment_id", name="uq_order_payment_entries_order_payment"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payment_transactions.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)

    order = db.relationship("Order", back_populates="payment_history")

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "paid_at": to_utc_z(self.paid_at),
        }
