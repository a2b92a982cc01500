"""
Facebook signed_request parsing and verification.

A signed request is ``<signature>.<payload>`` where both parts are URL-safe
base64 without padding, the payload is a JSON object and the signature is
the HMAC-SHA256 of the encoded payload keyed with the app secret. A
signature over the payload rewritten to the standard base64 alphabet is
accepted too.
"""
import base64
import binascii
import hashlib
import hmac
import json
from typing import Any

from zapsocial.exceptions import MalformedPayload, SignatureMismatch


def base64_url_decode(data: str) -> bytes:
    """Decode URL-safe base64, restoring any stripped padding."""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError) as e:
        raise MalformedPayload(f"Invalid base64 segment: {e}") from e


def base64_url_encode(data: bytes) -> str:
    """Encode bytes as URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _secret_bytes(secret: str | bytes) -> bytes:
    if not secret:
        raise ValueError("Signing secret must not be empty")
    if isinstance(secret, str):
        return secret.encode("utf-8")
    return secret


def _sign(encoded_payload: str, secret: bytes) -> bytes:
    return hmac.new(secret, encoded_payload.encode("ascii"), hashlib.sha256).digest()


def _signature_matches(signature: bytes, encoded_payload: str, secret: bytes) -> bool:
    if hmac.compare_digest(signature, _sign(encoded_payload, secret)):
        return True

    # Some senders sign the payload in the standard base64 alphabet
    standard = encoded_payload.replace("-", "+").replace("_", "/")
    if standard == encoded_payload:
        return False
    return hmac.compare_digest(signature, _sign(standard, secret))


def parse_signed_request(signed_request: str, secret: str | bytes) -> dict[str, Any]:
    """
    Verify a signed request and return its decoded payload.

    Args:
        signed_request: The ``signature.payload`` string sent by the platform
        secret: The app secret shared with the platform

    Returns:
        The decoded payload object

    Raises:
        MalformedPayload: The string is not two valid base64 parts or the
            payload is not a JSON object
        SignatureMismatch: The signature does not match the payload
    """
    key = _secret_bytes(secret)

    parts = signed_request.split(".")
    if len(parts) != 2:
        raise MalformedPayload("Invalid signed_request format")

    encoded_sig, encoded_payload = parts
    signature = base64_url_decode(encoded_sig)
    payload = base64_url_decode(encoded_payload)

    # Both parts decoded, so encoded_payload is plain ASCII
    if not _signature_matches(signature, encoded_payload, key):
        raise SignatureMismatch()

    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedPayload("Payload is not valid JSON") from e

    if not isinstance(data, dict):
        raise MalformedPayload("Payload is not a JSON object")

    return data


def sign_request(payload: dict[str, Any], secret: str | bytes) -> str:
    """Build a signed request for ``payload`` in the platform's format."""
    key = _secret_bytes(secret)
    encoded_payload = base64_url_encode(
        json.dumps(payload, separators=(",", ":")).encode("utf-8")
    )
    encoded_sig = base64_url_encode(_sign(encoded_payload, key))
    return f"{encoded_sig}.{encoded_payload}"
