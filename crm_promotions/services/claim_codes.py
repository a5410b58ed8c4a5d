import re
import time

from crm_promotions.core.id_utils import generate_url_safe_token

CLAIM_CODE_PREFIX = "PROMO-"
CLAIM_CODE_LENGTH = 8
CLAIM_CODE_RE = re.compile(r"^PROMO-[A-Za-z0-9_-]{8}$")

_BASE36_DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def generate_claim_code(promotion_id: str, customer_id: str) -> str:
    """Return a fresh ``PROMO-XXXXXXXX`` claim code.

    The promotion and customer ids are part of the call signature only; the
    code is drawn at random from the URL-safe alphabet and upper-cased, so two
    calls for the same pair give different codes. Callers that need a stable
    code per customer must reuse the code stored on the delivery row.
    """
    return f"{CLAIM_CODE_PREFIX}{generate_url_safe_token(CLAIM_CODE_LENGTH).upper()}"


def is_claim_code(value: str) -> bool:
    return bool(CLAIM_CODE_RE.match(value or ""))


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_promo_code(seed: str, *, now_ms: int | None = None) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    prefix = (seed or "PROMO")[:8].upper()
    return f"AUTO_{prefix}_{_to_base36(timestamp)}"
