"""At-rest encryption for sensitive voter fields."""
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from vote_integrity.shared.errors import DatabaseError

logger = logging.getLogger(__name__)


class FieldCipher:
    """
    Fernet encryption for a single text column.

    Without a key, values pass through unchanged; the store logs a warning
    once so a deployment cannot silently run unencrypted.
    """

    def __init__(self, key: Optional[str]):
        self._fernet = Fernet(key.encode("utf-8")) if key else None
        if self._fernet is None:
            logger.warning("No student id encryption key configured; student ids stored in plain text")

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, value: str) -> str:
        if self._fernet is None:
            return value
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, value: str) -> str:
        if self._fernet is None:
            return value
        try:
            return self._fernet.decrypt(value.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeEncodeError) as e:
            raise DatabaseError("Stored student id could not be decrypted with the configured key") from e
