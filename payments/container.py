from dataclasses import dataclass

from appointments.services import AppointmentStatusCoupler
from .credit_service import CreditService
from .order_service import OrderLedgerService
from .providers import PaymentProviderRegistry
from .reconciliation_service import PaymentReconciler
from .refund_service import RefundService
from .settlement_service import SettlementService


@dataclass
class PaymentServices:
    """Wired payment services shared by views and tasks"""

    providers: PaymentProviderRegistry
    coupler: AppointmentStatusCoupler
    ledger: OrderLedgerService
    reconciler: PaymentReconciler
    refunds: RefundService
    settlements: SettlementService
    credits: CreditService

    @classmethod
    def build(cls, providers, coupler=None):
        coupler = coupler or AppointmentStatusCoupler()
        credits = CreditService()
        refunds = RefundService(providers, credits=credits)
        return cls(
            providers=providers,
            coupler=coupler,
            ledger=OrderLedgerService(providers),
            reconciler=PaymentReconciler(providers, coupler, refunds=refunds),
            refunds=refunds,
            settlements=SettlementService(),
            credits=credits,
        )

    @classmethod
    def from_settings(cls):
        return cls.build(PaymentProviderRegistry.from_settings())
