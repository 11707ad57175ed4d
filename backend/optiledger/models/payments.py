from __future__ import annotations

from ..extensions import db
from optiledger.time_utils import to_utc_z


class PaymentTransaction(db.Model):
    """
    One money movement recorded against a cash register session.

    WHY: Sales, debt payments and expenses all flow through the same ledger
    so that session totals, order payment history and client debt can be
    derived from one place.

    METHOD PAYLOAD: method-specific data lives in one-to-one side tables
    (check, bank slip, promissory note). A payment carries at most the one
    payload that matches its payment_method.

    COUNTING: posted_register_id is the session whose totals include this
    payment. Instantaneous methods and checks are counted at creation;
    bank slips and promissory notes are counted when they settle.
    """
    __tablename__ = "payment_transactions"
    __table_args__ = (
        db.Index("ix_payment_transactions_register_status", "cash_register_id", "status"),
        db.Index("ix_payment_transactions_method_status", "payment_method", "status"),
        db.Index("ix_payment_transactions_date", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False)

    type = db.Column(db.String(16), nullable=False, index=True)  # sale, debt_payment, expense
    payment_method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Links
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    legacy_client_id = db.Column(db.Integer, db.ForeignKey("legacy_clients.id"), nullable=True, index=True)
    institution_id = db.Column(db.String(64), nullable=True)

    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=False)
    posted_register_id = db.Column(db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=True)

    # Credit card installments
    installment_current = db.Column(db.Integer, nullable=True)
    installment_total = db.Column(db.Integer, nullable=True)
    installment_value_cents = db.Column(db.Integer, nullable=True)

    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=True)  # expenses only

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    # Soft delete
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    cash_register = db.relationship("CashRegisterSession", foreign_keys=[cash_register_id])
    posted_register = db.relationship("CashRegisterSession", foreign_keys=[posted_register_id])
    order = db.relationship("Order", foreign_keys=[order_id])

    check_detail = db.relationship(
        "PaymentCheckDetail", uselist=False, back_populates="payment", cascade="all, delete-orphan"
    )
    bank_slip_detail = db.relationship(
        "PaymentBankSlipDetail", uselist=False, back_populates="payment", cascade="all, delete-orphan"
    )
    promissory_note = db.relationship(
        "PaymentPromissoryNote", uselist=False, back_populates="payment", cascade="all, delete-orphan"
    )
    debt_installments = db.relationship(
        "PaymentDebtInstallment",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentDebtInstallment.number",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "date": to_utc_z(self.date),
            "type": self.type,
            "payment_method": self.payment_method,
            "status": self.status,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "legacy_client_id": self.legacy_client_id,
            "institution_id": self.institution_id,
            "cash_register_id": self.cash_register_id,
            "posted_register_id": self.posted_register_id,
            "installments": None,
            "description": self.description,
            "category": self.category,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "settled_at": to_utc_z(self.settled_at) if self.settled_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "deleted_by": self.deleted_by,
            "version_id": self.version_id,
        }
        if self.installment_total:
            data["installments"] = {
                "current": self.installment_current,
                "total": self.installment_total,
                "value_cents": self.installment_value_cents,
            }
        if self.check_detail is not None:
            data["check"] = self.check_detail.to_dict()
        if self.bank_slip_detail is not None:
            data["bank_slip"] = self.bank_slip_detail.to_dict()
        if self.promissory_note is not None:
            data["promissory_note"] = self.promissory_note.to_dict()
        if self.debt_installments:
            data["debt_installments"] = [i.to_dict() for i in self.debt_installments]
        return data


class PaymentCheckDetail(db.Model):
    """
    Check payload and compensation state.

    STATE MACHINE: pending -> compensated | rejected. Both outcomes are
    terminal; rejected requires a reason.
    """
    __tablename__ = "payment_check_details"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payment_transactions.id"), nullable=False, unique=True)

    bank = db.Column(db.String(64), nullable=False)
    check_number = db.Column(db.String(32), nullable=False)
    check_date = db.Column(db.DateTime(timezone=True), nullable=False)
    account_holder = db.Column(db.String(128), nullable=False)
    branch = db.Column(db.String(16), nullable=False)
    account_number = db.Column(db.String(32), nullable=False)
    presentation_date = db.Column(db.DateTime(timezone=True), nullable=True)

    compensation_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    rejection_reason = db.Column(db.String(255), nullable=True)
    compensation_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    payment = db.relationship("PaymentTransaction", back_populates="check_detail")

    def to_dict(self) -> dict:
        return {
            "bank": self.bank,
            "check_number": self.check_number,
            "check_date": to_utc_z(self.check_date),
            "account_holder": self.account_holder,
            "branch": self.branch,
            "account_number": self.account_number,
            "presentation_date": to_utc_z(self.presentation_date) if self.presentation_date else None,
            "compensation_status": self.compensation_status,
            "rejection_reason": self.rejection_reason,
            "compensation_updated_at": to_utc_z(self.compensation_updated_at) if self.compensation_updated_at else None,
        }


class PaymentBankSlipDetail(db.Model):
    """Bank slip payload plus the gateway registration it produced, if any."""
    __tablename__ = "payment_bank_slip_details"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payment_transactions.id"), nullable=False, unique=True)

    code = db.Column(db.String(64), nullable=False)
    bank = db.Column(db.String(64), nullable=True)

    # Gateway registration
    nosso_numero = db.Column(db.String(32), nullable=True, unique=True)
    barcode = db.Column(db.String(64), nullable=True)
    digitable_line = db.Column(db.String(64), nullable=True)
    pdf_url = db.Column(db.String(512), nullable=True)
    qr_code = db.Column(db.Text, nullable=True)
    gateway_status = db.Column(db.String(16), nullable=True, index=True)
    gateway_paid_cents = db.Column(db.Integer, nullable=True)
    gateway_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_error_code = db.Column(db.String(64), nullable=True)
    last_error_message = db.Column(db.String(255), nullable=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    payment = db.relationship("PaymentTransaction", back_populates="bank_slip_detail")

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "bank": self.bank,
            "nosso_numero": self.nosso_numero,
            "barcode": self.barcode,
            "digitable_line": self.digitable_line,
            "pdf_url": self.pdf_url,
            "qr_code": self.qr_code,
            "gateway_status": self.gateway_status,
            "gateway_paid_cents": self.gateway_paid_cents,
            "gateway_paid_at": to_utc_z(self.gateway_paid_at) if self.gateway_paid_at else None,
            "last_error_code": self.last_error_code,
            "last_error_message": self.last_error_message,
            "last_synced_at": to_utc_z(self.last_synced_at) if self.last_synced_at else None,
        }


class PaymentPromissoryNote(db.Model):
    __tablename__ = "payment_promissory_notes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payment_transactions.id"), nullable=False, unique=True)
    number = db.Column(db.String(32), nullable=False)

    payment = db.relationship("PaymentTransaction", back_populates="promissory_note")

    def to_dict(self) -> dict:
        return {"number": self.number}


class PaymentDebtInstallment(db.Model):
    """
    Installment schedule generated for a bank slip or promissory note
    when the client takes the amount as debt.
    """
    __tablename__ = "payment_debt_installments"
    __table_args__ = (
        db.UniqueConstraint("payment_id", "number", name="uq_debt_installments_payment_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payment_transactions.id"), nullable=False, index=True)
    number = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="open")  # open, paid, cancelled

    payment = db.relationship("PaymentTransaction", back_populates="debt_installments")

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "amount_cents": self.amount_cents,
            "due_date": to_utc_z(self.due_date),
            "status": self.status,
        }
