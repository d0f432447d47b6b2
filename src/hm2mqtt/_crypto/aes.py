"""AES-128-CBC obfuscation of device identifiers in current-epoch topics."""

from __future__ import annotations

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from hm2mqtt.exceptions import Hm2MqttCryptoError

_TOPIC_KEY = b"!@#$%^&*()_+{}[]"
_ZERO_IV = b"\x00" * 16


def _cipher() -> Cipher:
    return Cipher(algorithms.AES(_TOPIC_KEY), modes.CBC(_ZERO_IV))


def _parse_hex(value: str) -> bytes:
    text = value.strip()
    if not text:
        raise Hm2MqttCryptoError("Topic identifier is empty")
    if len(text) % 2 != 0:
        raise Hm2MqttCryptoError(f"Topic identifier hex length must be even (got {len(text)})")
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise Hm2MqttCryptoError("Topic identifier must be hex-encoded") from exc


def encode_topic_id(device_id: str) -> str:
    """Encrypt a raw device id into its current-epoch topic form.

    Parameters
    ----------
    device_id : str
        Raw identifier, usually the MAC address without separators.

    Returns
    -------
    str
        Lowercase hex ciphertext.

    Raises
    ------
    Hm2MqttCryptoError
        If encryption fails.
    """
    try:
        padder = padding.PKCS7(128).padder()
        padded = padder.update(device_id.encode("utf-8")) + padder.finalize()
        encryptor = _cipher().encryptor()
        ct = encryptor.update(padded) + encryptor.finalize()
        return ct.hex()
    except Exception as exc:
        raise Hm2MqttCryptoError(f"Topic id encryption failed: {exc}") from exc


def decode_topic_id(topic_id: str) -> str:
    """Reverse :func:`encode_topic_id`. Used by diagnostics only.

    Raises
    ------
    Hm2MqttCryptoError
        If *topic_id* is not valid hex or does not decrypt cleanly.
    """
    try:
        ct = _parse_hex(topic_id)
        decryptor = _cipher().decryptor()
        padded = decryptor.update(ct) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except Hm2MqttCryptoError:
        raise
    except Exception as exc:
        raise Hm2MqttCryptoError(f"Topic id decryption failed: {exc}") from exc
