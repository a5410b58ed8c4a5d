import string

import shortuuid

URL_SAFE_ALPHABET = string.ascii_letters + string.digits + "_-"

_url_safe = shortuuid.ShortUUID(alphabet=URL_SAFE_ALPHABET)


def generate_url_safe_token(length: int = 8) -> str:
    return _url_safe.random(length=length)
