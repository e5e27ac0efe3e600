"""Encoding of sensitive appointment text fields."""

from functools import lru_cache

import structlog
from cryptography.fernet import Fernet, InvalidToken

from clinic_api.config import settings

logger = structlog.get_logger(__name__)


class FieldCodec:
    """
    Encode and decode sensitive text columns.

    With a Fernet key configured values are encrypted at rest. Without a key
    values are stored as given. Decoding never raises: anything that cannot
    be decrypted (legacy plaintext, rotated keys) is returned unchanged.
    """

    def __init__(self, key: str | None = None):
        """Initialize codec, optionally with a Fernet key."""
        self._fernet = Fernet(key.encode()) if key else None

    @property
    def encrypts(self) -> bool:
        """Whether values are encrypted at rest."""
        return self._fernet is not None

    def encode(self, value: str | None) -> str | None:
        """Encode a plaintext value for storage."""
        if value is None or self._fernet is None:
            return value
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decode(self, value: str | None) -> str | None:
        """Decode a stored value, falling back to the stored text."""
        if value is None or self._fernet is None:
            return value
        try:
            return self._fernet.decrypt(value.encode("utf-8")).decode("utf-8")
        except (InvalidToken, ValueError) as e:
            logger.debug("field_decode_fallback", error=type(e).__name__)
            return value


@lru_cache
def get_field_codec() -> FieldCodec:
    """Get the codec configured for this process."""
    return FieldCodec(settings.field_encryption_key)
