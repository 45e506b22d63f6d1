# clients/crypto.py
from dataclasses import dataclass
from typing import Optional
import base64, binascii, os

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization, hashes
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

RSA_KEY_BITS = 2048
AES_KEY_SIZE = 32    # AES-256
GCM_NONCE_SIZE = 12  # 96 Bit, NIST SP 800-38D
GCM_TAG_SIZE = 16


class KeyFormatError(ValueError):
    """Key material could not be decoded."""
    pass


class DecryptionFailure(Exception):
    """Envelope could not be opened. Deliberately carries no detail."""

    def __init__(self):
        super().__init__("cannot read message")


@dataclass(frozen=True)
class KeyPair:
    public_key: rsa.RSAPublicKey
    private_key: rsa.RSAPrivateKey


# --- KeyCodec ---
def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")

def b64decode(text: str) -> bytes:
    if not isinstance(text, str):
        raise KeyFormatError("expected base64 string")
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise KeyFormatError("invalid base64") from None

def generate_rsa_private(bits=RSA_KEY_BITS):
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)

def generate_keypair(bits=RSA_KEY_BITS) -> KeyPair:
    priv = generate_rsa_private(bits)
    return KeyPair(public_key=priv.public_key(), private_key=priv)

def public_key_to_bytes(pub) -> bytes:
    return pub.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo
    )

def public_key_from_bytes(data: bytes):
    try:
        pub = serialization.load_der_public_key(data)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        raise KeyFormatError("invalid public key") from None
    if not isinstance(pub, rsa.RSAPublicKey):
        raise KeyFormatError("public key must be RSA")
    return pub

def encode_public_key(pub) -> str:
    return b64encode(public_key_to_bytes(pub))

def decode_public_key(text: str):
    return public_key_from_bytes(b64decode(text))

def encode_private_key(priv) -> str:
    # Nur für den lokalen Key-Store, verlässt nie den Client
    return b64encode(priv.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption()
    ))

def decode_private_key(text: str):
    try:
        priv = serialization.load_der_private_key(b64decode(text), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        raise KeyFormatError("invalid private key") from None
    if not isinstance(priv, rsa.RSAPrivateKey):
        raise KeyFormatError("private key must be RSA")
    return priv

def encode_symmetric_key(key: bytes) -> str:
    if len(key) != AES_KEY_SIZE:
        raise KeyFormatError(f"symmetric key must be {AES_KEY_SIZE} bytes")
    return b64encode(key)

def decode_symmetric_key(text: str) -> bytes:
    key = b64decode(text)
    if len(key) != AES_KEY_SIZE:
        raise KeyFormatError(f"symmetric key must be {AES_KEY_SIZE} bytes")
    return key


# --- RSA-OAEP: Key Transport für AES-Key ---
_OAEP = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()),
                     algorithm=hashes.SHA256(),
                     label=None)  # RSAES-OAEP (RFC 8017)

def rsa_oaep_encrypt(pub, key: bytes) -> bytes:
    return pub.encrypt(key, _OAEP)

def rsa_oaep_decrypt(priv, ciphertext: bytes) -> bytes:
    return priv.decrypt(ciphertext, _OAEP)


# --- AES-GCM: Nachrichten-Verschlüsselung ---
def aes_gcm_encrypt(key: bytes, plaintext: bytes) -> bytes:
    """Returns nonce || ciphertext || tag. The nonce is fresh for every call."""
    if len(key) != AES_KEY_SIZE:
        raise ValueError(f"AES key length must be {AES_KEY_SIZE}")
    nonce = os.urandom(GCM_NONCE_SIZE)
    # cryptography packt Tag ans Ende von ct
    return nonce + AESGCM(key).encrypt(nonce, plaintext, None)

def aes_gcm_decrypt(key: bytes, blob: bytes) -> bytes:
    """Inverse of aes_gcm_encrypt(). Raises InvalidTag or ValueError."""
    if len(key) != AES_KEY_SIZE:
        raise ValueError(f"AES key length must be {AES_KEY_SIZE}")
    if len(blob) < GCM_NONCE_SIZE + GCM_TAG_SIZE:
        raise ValueError("payload shorter than nonce and tag")
    nonce, ct = blob[:GCM_NONCE_SIZE], blob[GCM_NONCE_SIZE:]
    return AESGCM(key).decrypt(nonce, ct, None)


# --- HybridCipher ---
@dataclass(frozen=True)
class Envelope:
    wrapped_symmetric_key: bytes
    wrapped_payload: bytes
    timestamp: Optional[int] = None  # ms, vom Relay gesetzt

    def to_wire(self) -> dict:
        data = {"wrappedSymmetricKey": b64encode(self.wrapped_symmetric_key),
                "wrappedPayload": b64encode(self.wrapped_payload)}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_wire(cls, data: dict) -> "Envelope":
        """Raises KeyFormatError for missing or non-base64 fields."""
        try:
            wrapped_key = data["wrappedSymmetricKey"]
            wrapped_payload = data["wrappedPayload"]
        except (KeyError, TypeError):
            raise KeyFormatError("envelope fields missing") from None
        timestamp = data.get("timestamp")
        if timestamp is not None and not isinstance(timestamp, int):
            raise KeyFormatError("timestamp must be an integer")
        return cls(b64decode(wrapped_key), b64decode(wrapped_payload), timestamp)


def wrap(plaintext: bytes, recipient_public_key) -> Envelope:
    """
    Encrypts plaintext of any length for one recipient.

    A new AES-256 key and GCM nonce are drawn for every call, so wrapping the
    same plaintext twice never yields related ciphertexts. RSA only ever sees
    the 32 key bytes, which keeps it far below the OAEP size limit.
    """
    aes_key = os.urandom(AES_KEY_SIZE)
    return Envelope(
        wrapped_symmetric_key=rsa_oaep_encrypt(recipient_public_key, aes_key),
        wrapped_payload=aes_gcm_encrypt(aes_key, plaintext),
    )


def unwrap(envelope: Envelope, own_private_key) -> bytes:
    """
    Opens an envelope addressed to own_private_key.

    Raises:
        DecryptionFailure: wrong key, tampered payload, truncated nonce or a
            symmetric key of the wrong width. Never returns partial output.
    """
    try:
        aes_key = rsa_oaep_decrypt(own_private_key, envelope.wrapped_symmetric_key)
        if len(aes_key) != AES_KEY_SIZE:
            raise DecryptionFailure()
        return aes_gcm_decrypt(aes_key, envelope.wrapped_payload)
    except (InvalidTag, ValueError, TypeError):
        raise DecryptionFailure() from None
