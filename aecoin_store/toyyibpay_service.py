"""
ToyyibPay adapter (redirect style).

The browser comes back with ``status_id`` and ``billcode`` in the URL; those
are hints only. A payment counts once ``getBillTransactions`` confirms it
server to server.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import requests

from aecoin_store import config
from aecoin_store.errors import ProviderQueryError
from aecoin_store.events import TransactionStatus

logger = logging.getLogger(__name__)

# billpaymentStatus / status_id values
STATUS_SUCCESS = "1"
STATUS_PENDING = "2"
STATUS_FAILED = "3"

# ToyyibPay only settles in ringgit
CURRENCY = "MYR"


@dataclass(frozen=True)
class RedirectHint:
    external_id: Optional[str]
    claims_success: bool


def _post(path: str, data: Dict[str, Any]):
    url = f"{config.TOYYIBPAY_BASE_URL}/index.php/api/{path}"
    try:
        resp = requests.post(url, data=data, timeout=config.TOYYIBPAY_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise ProviderQueryError(f"ToyyibPay {path} request failed: {e!r}")

    try:
        return resp.json()
    except ValueError:
        raise ProviderQueryError(f"ToyyibPay {path} returned non-JSON (HTTP {resp.status_code})")


def create_bill(
    *,
    amount_minor_units: int,
    external_reference: str,
    name: str,
    description: str,
    payer_name: str,
    payer_email: str,
    return_url: str,
    callback_url: str,
    payer_phone: str = "0000000000",
) -> str:
    """Creates a bill and returns its code (the ledger's external id)."""
    raw = _post("createBill", {
        "userSecretKey": config.TOYYIBPAY_SECRET_KEY,
        "categoryCode": config.TOYYIBPAY_CATEGORY_CODE,
        "billName": name[:30],
        "billDescription": description[:100],
        "billPriceSetting": 1,
        "billPayorInfo": 1,
        "billAmount": amount_minor_units,     # sen
        "billReturnUrl": return_url,
        "billCallbackUrl": callback_url,
        "billExternalReferenceNo": external_reference,
        "billTo": payer_name,
        "billEmail": payer_email,
        "billPhone": payer_phone,
    })
    bill_code = None
    if isinstance(raw, list) and raw and isinstance(raw[0], dict):
        bill_code = raw[0].get("BillCode")
    if not bill_code:
        raise ProviderQueryError(f"ToyyibPay createBill returned no BillCode: {raw!r}")
    return bill_code


def payment_url(bill_code: str) -> str:
    return f"{config.TOYYIBPAY_BASE_URL}/{bill_code}"


def parse_return(params) -> RedirectHint:
    """Reads the browser return (status_id) or the server callback (status)."""
    bill_code = (params.get("billcode") or "").strip() or None
    status = params.get("status_id") or params.get("status")
    return RedirectHint(external_id=bill_code, claims_success=status == STATUS_SUCCESS)


def _amount_to_minor_units(value) -> Optional[int]:
    """billpaymentAmount is reported in sen, the same unit as billAmount ("8820" is RM88.20)."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    if amount != amount.to_integral_value():
        return None
    return int(amount)


def query_transaction(bill_code: str) -> TransactionStatus:
    raw = _post("getBillTransactions", {"billCode": bill_code})
    if not isinstance(raw, list) or not raw:
        return TransactionStatus(settled=False)

    transactions = [t for t in raw if isinstance(t, dict)]
    paid = [t for t in transactions if str(t.get("billpaymentStatus")) == STATUS_SUCCESS]
    if paid:
        tx = paid[0]
        return TransactionStatus(
            settled=True,
            paid_amount_minor_units=_amount_to_minor_units(tx.get("billpaymentAmount")),
            currency=CURRENCY,
            invoice_ref=tx.get("billpaymentInvoiceNo"),
        )

    declined = bool(transactions) and all(str(t.get("billpaymentStatus")) == STATUS_FAILED for t in transactions)
    return TransactionStatus(settled=False, declined=declined)
