"""Asymmetric request signing for the Dr. Green API.

Dr. Green authenticates mutating calls with an `x-auth-signature` header:
a SHA-256 signature of the exact request body made with the tenant's
private key, base64-encoded.

The secret key is stored either as a PEM private key or as the base64
encoding of one. Base64 decoding is tried first; if that does not yield a
recognizable key, the value is used verbatim.
"""

import base64
import binascii
from typing import Any

import structlog
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from budstack.errors import SigningError

logger = structlog.get_logger(__name__)

PEM_MARKER = b"-----BEGIN"


def _decode_key_material(secret_key: str) -> bytes:
    """Pick PEM/DER bytes out of a stored secret key."""
    compact = "".join(secret_key.split())
    try:
        decoded = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""

    if decoded and (PEM_MARKER in decoded or decoded[:1] == b"\x30"):
        return decoded

    # Env vars often carry escaped newlines
    return secret_key.replace("\\n", "\n").encode("utf-8")


def load_private_key(secret_key: str) -> Any:
    """Load a private key from PEM, base64(PEM) or base64(DER).

    Args:
        secret_key: Stored secret key.

    Returns:
        A cryptography private key object.

    Raises:
        SigningError: If no private key can be loaded.
    """
    if not secret_key:
        raise SigningError("Secret key is empty")

    material = _decode_key_material(secret_key)

    try:
        if PEM_MARKER in material:
            return serialization.load_pem_private_key(material, password=None)
        return serialization.load_der_private_key(material, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.warning("private_key_load_failed", error=str(e))
        raise SigningError("Secret key is not a valid private key") from e


def _load_public_key(key: str | Any) -> Any:
    if not isinstance(key, str):
        return key.public_key() if hasattr(key, "public_key") else key

    material = _decode_key_material(key)
    if b"PUBLIC KEY" in material:
        return serialization.load_pem_public_key(material)
    return load_private_key(key).public_key()


def _payload_bytes(payload: str | bytes) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    raise TypeError(f"Payload must be str or bytes, not {type(payload).__name__}")


def sign_payload(payload: str | bytes, secret_key: str | Any) -> str:
    """Sign a request body.

    An empty payload is signed as the empty string.

    Args:
        payload: Exact body that will be transmitted. Strings are UTF-8 encoded.
        secret_key: Stored secret key, or an already-loaded private key.

    Returns:
        Base64-encoded signature.

    Raises:
        SigningError: If the key cannot be loaded or cannot sign.
    """
    private_key = load_private_key(secret_key) if isinstance(secret_key, str) else secret_key

    try:
        data = _payload_bytes(payload)
        if isinstance(private_key, ec.EllipticCurvePrivateKey):
            signature = private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        elif isinstance(private_key, rsa.RSAPrivateKey):
            signature = private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(private_key, ed25519.Ed25519PrivateKey):
            signature = private_key.sign(data)
        else:
            raise SigningError(f"Unsupported key type: {type(private_key).__name__}")
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningError("Signing failed") from e

    return base64.b64encode(signature).decode("ascii")


def verify_payload(payload: str | bytes, signature: str, key: str | Any) -> bool:
    """Verify a base64 signature over a request body.

    Args:
        payload: Body that was signed.
        signature: Base64-encoded signature.
        key: Public key PEM, private key (PEM/base64), or a key object.

    Returns:
        True if the signature matches, False on mismatch or malformed input.
    """
    try:
        public_key = _load_public_key(key)
        raw_signature = base64.b64decode(signature, validate=True)
        data = _payload_bytes(payload)

        if isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(raw_signature, data, ec.ECDSA(hashes.SHA256()))
        elif isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(raw_signature, data, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(public_key, ed25519.Ed25519PublicKey):
            public_key.verify(raw_signature, data)
        else:
            return False
    except (InvalidSignature, SigningError, ValueError, TypeError, AttributeError, UnsupportedAlgorithm):
        return False

    return True
