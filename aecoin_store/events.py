"""
Canonical payment events. Provider adapters translate whatever the provider
sends into one of these; nothing past the adapter ever sees raw provider JSON.
"""
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class PaymentSucceeded:
    external_id: str
    paid_amount_minor_units: int
    currency: str


@dataclass(frozen=True)
class PaymentFailed:
    external_id: str
    reason: str = ""


@dataclass(frozen=True)
class Unrecognized:
    event_type: str = ""


PaymentEvent = Union[PaymentSucceeded, PaymentFailed, Unrecognized]


@dataclass(frozen=True)
class TransactionStatus:
    """Authoritative answer of a server-to-server status query."""

    settled: bool
    paid_amount_minor_units: Optional[int] = None
    currency: Optional[str] = None
    invoice_ref: Optional[str] = None
    declined: bool = False

    def as_event(self, external_id: str) -> PaymentEvent:
        if self.settled and self.paid_amount_minor_units is not None and self.currency:
            return PaymentSucceeded(external_id, self.paid_amount_minor_units, self.currency)
        if self.declined:
            return PaymentFailed(external_id, "declined by provider")
        return Unrecognized("pending")
