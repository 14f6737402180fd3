import base64
import hashlib
import hmac

from paygate.models.merchant import SignatureEncoding


def sign(payload: str, secret: str, encoding: SignatureEncoding = SignatureEncoding.HEX) -> str:
    """HMAC-SHA256 over the exact UTF-8 payload bytes."""
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    if encoding == SignatureEncoding.BASE64:
        return base64.b64encode(digest).decode("ascii")
    return digest.hex()


def verify_signature(
    payload: str,
    signature: str,
    secret: str,
    encoding: SignatureEncoding = SignatureEncoding.HEX,
) -> bool:
    expected = sign(payload, secret, encoding)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
