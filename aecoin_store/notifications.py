import logging
import smtplib
from email.message import EmailMessage
from typing import List, Tuple

from aecoin_store import config
from aecoin_store.errors import NotificationError

logger = logging.getLogger(__name__)


def build_confirmation(to_email: str, order_id: str, final_amount, codes: List[Tuple[str, str]]) -> EmailMessage:
    """codes: (code, package name) pairs."""
    lines = [
        "Thank you for your purchase!",
        "",
        f"Order: {order_id}",
        f"Total paid: {config.STORE_CURRENCY} {final_amount}",
        "",
        "Your redemption codes:",
    ]
    lines += [f"  {code}  ({package_name})" for code, package_name in codes]

    msg = EmailMessage()
    msg["Subject"] = f"Your AECOIN order {order_id[:8]}"
    msg["From"] = config.SMTP_FROM
    msg["To"] = to_email
    msg.set_content("\n".join(lines))
    return msg


def send_order_confirmation(to_email: str, order_id: str, final_amount, codes: List[Tuple[str, str]]) -> bool:
    if not config.SMTP_HOST:
        logger.info("SMTP_HOST not set, skipping confirmation email for order %s", order_id)
        return False

    msg = build_confirmation(to_email, order_id, final_amount, codes)
    try:
        with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=15) as smtp:
            smtp.starttls()
            if config.SMTP_USER:
                smtp.login(config.SMTP_USER, config.SMTP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise NotificationError(f"Failed to send confirmation for order {order_id}: {e}") from e
    return True
