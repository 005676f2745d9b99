# Payments domain module
from app.domain.payments.models import PaymentSession, PaymentSessionStatus
from app.domain.payments.session import PaymentSessionService
from app.domain.payments.reconciler import PaymentReconciler, ReconcilerSupervisor

__all__ = [
    "PaymentSession",
    "PaymentSessionStatus",
    "PaymentSessionService",
    "PaymentReconciler",
    "ReconcilerSupervisor",
]
