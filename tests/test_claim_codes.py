import re

from crm_promotions.services.claim_codes import (
    CLAIM_CODE_RE,
    generate_claim_code,
    generate_promo_code,
    is_claim_code,
)


def test_claim_code_matches_format():
    for _ in range(200):
        code = generate_claim_code("promo-1", "customer-1")
        assert CLAIM_CODE_RE.match(code), code
        assert code.startswith("PROMO-")
        assert len(code) == 14
        suffix = code[len("PROMO-"):]
        assert suffix == suffix.upper()


def test_claim_code_does_not_depend_on_ids():
    codes = {generate_claim_code("promo-1", "customer-1") for _ in range(50)}
    assert len(codes) > 1


def test_is_claim_code():
    assert is_claim_code("PROMO-AB12_-XY")
    assert not is_claim_code("PROMO-SHORT")
    assert not is_claim_code("promo-ABCDEFGH1")
    assert not is_claim_code("")


def test_promo_code_uses_seed_prefix_and_base36_timestamp():
    code = generate_promo_code("vip_exclusive_1700000000000", now_ms=1_700_000_000_000)
    assert code == "AUTO_VIP_EXCL_LOYW3V28"
    assert not is_claim_code(code)


def test_promo_code_with_empty_seed():
    code = generate_promo_code("", now_ms=35)
    assert code == "AUTO_PROMO_Z"
    assert re.match(r"^AUTO_[A-Z0-9_]+_[0-9A-Z]+$", generate_promo_code("birthday_special"))
