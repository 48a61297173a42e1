"""
Stellar wallet address and signature helpers
"""

import base64
import binascii
import logging

from stellar_sdk import Keypair
from stellar_sdk.exceptions import BadSignatureError, Ed25519PublicKeyInvalidError

from utils.exceptions import InvalidAddressError, ValidationError

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 64


def normalize_address(address: str) -> str:
    """Strip and upper-case a G... strkey, raising InvalidAddressError if it is not an ed25519 public key"""
    if not isinstance(address, str) or not address.strip():
        raise InvalidAddressError("wallet address is required")

    normalized = address.strip().upper()
    try:
        Keypair.from_public_key(normalized)
    except (Ed25519PublicKeyInvalidError, ValueError):
        raise InvalidAddressError("invalid Stellar wallet address")
    return normalized


def is_valid_address(address: str) -> bool:
    try:
        normalize_address(address)
    except InvalidAddressError:
        return False
    return True


def decode_signature(signature: str) -> bytes:
    """
    Decode a detached ed25519 signature.

    Hex is tried first, then base64; either way the result must be 64 bytes.
    """
    if not isinstance(signature, str) or not signature.strip():
        raise ValidationError("signature is required")

    value = signature.strip()

    try:
        decoded = bytes.fromhex(value)
        if len(decoded) == SIGNATURE_LENGTH:
            return decoded
    except ValueError:
        pass

    try:
        decoded = base64.b64decode(value, validate=True)
        if len(decoded) == SIGNATURE_LENGTH:
            return decoded
    except (binascii.Error, ValueError):
        pass

    raise ValidationError("signature must be a 64-byte hex or base64 string")


def verify_signature(address: str, message: str, signature: bytes) -> bool:
    """True when signature is the wallet's ed25519 signature over the UTF-8 message"""
    try:
        Keypair.from_public_key(address).verify(message.encode("utf-8"), signature)
    except BadSignatureError:
        logger.info(f"🔏 SIGNATURE_MISMATCH: {address[:6]}...{address[-4:]}")
        return False
    return True
