from __future__ import annotations

from ..extensions import db
from optiledger.time_utils import to_utc_z


SESSION_STATUS_OPEN = "open"
SESSION_STATUS_CLOSED = "closed"

# Payment methods that have their own sales bucket on a session.
SALES_METHODS = ("cash", "credit", "debit", "pix", "bank_slip", "promissory_note", "check")


class CashRegisterSession(db.Model):
    """
    Cash register session (one till, opened and closed once).

    WHY: Every payment is accountable to exactly one session. The session
    keeps running totals per payment method so the closing count can be
    compared against what the ledger says should be in the till.

    LIFECYCLE:
    - open: accepting payments, totals move with every posting
    - closed: totals frozen, expected balance and variance recorded

    SINGLE OPEN: open_slot is 1 while the session is open and NULL once it is
    closed. The unique constraint lets the database reject a second open
    session even when two requests race past the application check.
    """
    __tablename__ = "cash_register_sessions"
    __table_args__ = (
        db.UniqueConstraint("open_slot", name="uq_cash_register_sessions_open_slot"),
        db.Index("ix_cash_register_sessions_status_opened", "status", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_STATUS_OPEN, index=True)
    open_slot = db.Column(db.Integer, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Balances (all amounts in cents)
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_balance_cents = db.Column(db.Integer, nullable=True)
    expected_balance_cents = db.Column(db.Integer, nullable=True)  # set at close
    variance_cents = db.Column(db.Integer, nullable=True)  # closing - expected

    # Sales totals by method
    sales_total_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_credit_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_debit_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_pix_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_bank_slip_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_promissory_note_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_check_cents = db.Column(db.Integer, nullable=False, default=0)

    # Non-sale movements
    payments_received_cents = db.Column(db.Integer, nullable=False, default=0)  # debt payments
    payments_made_cents = db.Column(db.Integer, nullable=False, default=0)  # expenses

    opened_by = db.Column(db.String(64), nullable=False)
    closed_by = db.Column(db.String(64), nullable=True)
    observations = db.Column(db.Text, nullable=True)

    # Soft delete
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_STATUS_OPEN

    def sales_dict(self) -> dict:
        return {
            "total": self.sales_total_cents,
            "cash": self.sales_cash_cents,
            "credit": self.sales_credit_cents,
            "debit": self.sales_debit_cents,
            "pix": self.sales_pix_cents,
            "bank_slip": self.sales_bank_slip_cents,
            "promissory_note": self.sales_promissory_note_cents,
            "check": self.sales_check_cents,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "opening_balance_cents": self.opening_balance_cents,
            "closing_balance_cents": self.closing_balance_cents,
            "expected_balance_cents": self.expected_balance_cents,
            "variance_cents": self.variance_cents,
            "sales": self.sales_dict(),
            "payments": {
                "received": self.payments_received_cents,
                "made": self.payments_made_cents,
            },
            "opened_by": self.opened_by,
            "closed_by": self.closed_by,
            "observations": self.observations,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "deleted_by": self.deleted_by,
            "version_id": self.version_id,
        }
