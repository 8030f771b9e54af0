import logging

from sqlalchemy.orm import Session

from aecoin_store import ledger
from aecoin_store.errors import VerificationFailed
from aecoin_store.models import PendingPayment, PendingPaymentStatus

logger = logging.getLogger(__name__)


def verify_settlement(db: Session, pending: PendingPayment, paid_amount_minor_units, currency) -> None:
    """
    Checks a provider-reported settlement against the ledger entry.

    Amounts are compared as integer minor units, currencies by case-insensitive
    code. On any mismatch the entry is marked failed and VerificationFailed is
    raised; the error message stays generic so callers cannot learn the expected amount.
    """
    if pending.status == PendingPaymentStatus.FAILED.value:
        logger.warning("Pending payment %s already failed, refusing settlement", pending.external_id)
        raise VerificationFailed("Payment verification failed")

    if not isinstance(paid_amount_minor_units, int) or isinstance(paid_amount_minor_units, bool):
        logger.error("Unusable paid amount %r for %s", paid_amount_minor_units, pending.external_id)
        ledger.mark_failed(db, pending.external_id)
        raise VerificationFailed("Payment verification failed")

    if paid_amount_minor_units != pending.amount_minor_units:
        logger.error(
            "Amount mismatch for %s: paid %s, expected %s minor units",
            pending.external_id, paid_amount_minor_units, pending.amount_minor_units,
        )
        ledger.mark_failed(db, pending.external_id)
        raise VerificationFailed("Payment verification failed")

    if not currency or str(currency).upper() != pending.currency.upper():
        logger.error(
            "Currency mismatch for %s: paid %s, expected %s",
            pending.external_id, currency, pending.currency,
        )
        ledger.mark_failed(db, pending.external_id)
        raise VerificationFailed("Payment verification failed")
