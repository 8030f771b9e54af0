"""
Redemption codes.

Format: ``AE1000-XXXX-XXXX-XXXX``. The prefix carries the denomination so
support staff can tell a code's value at a glance; the blocks are drawn from
an alphabet without look-alike characters (no 0/O, 1/I/l). With the default
three blocks of four over 32 symbols there are 2**60 combinations per
denomination.
"""
import logging
import secrets
from dataclasses import dataclass

from sqlalchemy.orm import Session

from aecoin_store import config
from aecoin_store.errors import CodeGenerationError
from aecoin_store.models import RedemptionCode

logger = logging.getLogger(__name__)

ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
MAX_ATTEMPTS = 10


@dataclass(frozen=True)
class CodePolicy:
    prefix: str = "AE"
    encode_denomination: bool = True
    bonus_amount: int = 0
    blocks: int = 3
    block_length: int = 4


def policy_from_config() -> CodePolicy:
    return CodePolicy(
        prefix=config.CODE_PREFIX,
        encode_denomination=config.CODE_ENCODE_DENOMINATION,
        bonus_amount=config.CODE_BONUS_AMOUNT,
        blocks=config.CODE_BLOCKS,
        block_length=config.CODE_BLOCK_LENGTH,
    )


def credited_amount(purchased_amount: int, policy: CodePolicy) -> int:
    """Currency a code redeems for: the purchased denomination plus any bonus."""
    return purchased_amount + policy.bonus_amount


def generate_redemption_code(purchased_amount: int, policy: CodePolicy = CodePolicy()) -> str:
    head = f"{policy.prefix}{purchased_amount}" if policy.encode_denomination else policy.prefix
    blocks = [
        "".join(secrets.choice(ALPHABET) for _ in range(policy.block_length))
        for _ in range(policy.blocks)
    ]
    return "-".join([head] + blocks)


def issue_unique_code(db: Session, purchased_amount: int, policy: CodePolicy = CodePolicy()) -> str:
    """Generates a code not yet present in storage, regenerating on collision.

    The unique index on ``redemption_codes.code`` remains the final guard for
    codes issued concurrently by another session.
    """
    for attempt in range(1, MAX_ATTEMPTS + 1):
        code = generate_redemption_code(purchased_amount, policy)
        if db.query(RedemptionCode.id).filter_by(code=code).first() is None:
            return code
        logger.warning("Redemption code collision on attempt %s, regenerating", attempt)
    raise CodeGenerationError(f"Could not generate a unique redemption code after {MAX_ATTEMPTS} attempts")
