from .clients import Customer, LegacyClient
from .orders import Order, OrderPaymentEntry
from .registers import CashRegisterSession
from .payments import (
    PaymentTransaction,
    PaymentCheckDetail,
    PaymentBankSlipDetail,
    PaymentPromissoryNote,
    PaymentDebtInstallment,
)

__all__ = [
    'Customer', 'LegacyClient',
    'Order', 'OrderPaymentEntry',
    'CashRegisterSession',
    'PaymentTransaction', 'PaymentCheckDetail', 'PaymentBankSlipDetail',
    'PaymentPromissoryNote', 'PaymentDebtInstallment',
]
