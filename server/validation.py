# server/validation.py
"""Input validation for the relay. Runs before anything is stored or forwarded."""
import base64
import binascii
import re

from . import config

# Security limits
MAX_ID_LENGTH = 64
MAX_PUBLIC_KEY_B64 = 4096           # RSA-4096 SPKI DER passt mit Reserve
MAX_WRAPPED_KEY_B64 = 2048          # RSA-OAEP Ciphertext bis 8192 Bit
MAX_WRAPPED_PAYLOAD_B64 = config.MAX_FRAME_BYTES

_ID_PATTERN = re.compile(r'[A-Za-z0-9_-]+')


class ValidationError(ValueError):
    """Raised for missing or malformed request fields."""
    pass


def validate_id(value) -> str:
    """
    Validiert Room- und Participant-IDs (nanoid-Alphabet).

    Raises:
        ValidationError: Bei ungültiger ID
    """
    if not isinstance(value, str) or not value:
        raise ValidationError("Identifier is required")
    if len(value) > MAX_ID_LENGTH:
        raise ValidationError("Identifier too long")
    if not _ID_PATTERN.fullmatch(value):
        raise ValidationError("Identifier contains invalid characters")
    return value


def validate_b64_field(data: dict, name: str, max_length: int) -> bytes:
    """
    Holt ein Base64-Feld aus dem Request und dekodiert es.

    Security Checks:
    - Feld muss vorhanden und ein nicht-leerer String sein
    - Längen-Limitierung vor dem Dekodieren (Memory Exhaustion)
    - Striktes Base64-Alphabet

    Raises:
        ValidationError: Bei fehlendem oder ungültigem Feld
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    value = data.get(name)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{name} is required")
    if len(value) > max_length:
        raise ValidationError(f"{name} too large (max {max_length} characters)")
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise ValidationError(f"{name} is not valid base64") from None


def validate_public_key(data: dict) -> bytes:
    return validate_b64_field(data, "publicKey", MAX_PUBLIC_KEY_B64)


def validate_wrapped_key_material(data: dict) -> tuple:
    """Returns (wrapped_symmetric_key, wrapped_public_key) as bytes."""
    return (
        validate_b64_field(data, "wrappedSymmetricKey", MAX_WRAPPED_KEY_B64),
        validate_b64_field(data, "wrappedPublicKey", MAX_WRAPPED_PAYLOAD_B64),
    )
