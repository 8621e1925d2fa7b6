"""
Device signature verification for the signed-challenge mechanism.

Devices register a PEM-encoded public key (Ed25519, ECDSA P-256 or RSA) and
answer a challenge by signing its nonce. Signatures travel base64-encoded.
"""

import base64
import binascii
import logging

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

logger = logging.getLogger(__name__)


def load_public_key(public_key_pem: str):
    """
    Load a PEM public key

    Raises:
        ValueError: If the key cannot be parsed
    """
    try:
        return serialization.load_pem_public_key(public_key_pem.encode())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ValueError(f"Invalid public key: {e}")


def verify_signature(public_key_pem: str, message: str, signature_b64: str) -> bool:
    """
    Verify a device signature over a challenge nonce

    Args:
        public_key_pem: Device public key (PEM)
        message: Signed message (the challenge nonce)
        signature_b64: Base64 signature from the device

    Returns:
        True if the signature is valid, False otherwise
    """
    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError, TypeError):
        return False

    try:
        key = load_public_key(public_key_pem)
    except ValueError as e:
        logger.warning(f"Stored device key is unusable: {e}")
        return False

    data = message.encode()
    try:
        if isinstance(key, ed25519.Ed25519PublicKey):
            key.verify(signature, data)
        elif isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
        elif isinstance(key, rsa.RSAPublicKey):
            key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
        else:
            logger.warning(f"Unsupported device key type: {type(key).__name__}")
            return False
    except InvalidSignature:
        return False

    return True
