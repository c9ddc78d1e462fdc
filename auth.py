# auth.py
import hmac
from typing import Optional, Protocol

from loguru import logger

from config import Settings
from models import Principal


class AuthProvider(Protocol):
    def authenticate(self, email: str, password: str) -> Optional[Principal]:
        ...


class StaticAuthProvider:
    """Single fixed credential pair, taken from settings."""

    def __init__(self, email: str, password: str, principal: Principal):
        self._email = email
        self._password = password
        self._principal = principal

    @classmethod
    def from_settings(cls, settings: Settings) -> "StaticAuthProvider":
        return cls(
            email=settings.auth_email,
            password=settings.auth_password.get_secret_value(),
            principal=Principal(
                id=settings.auth_user_id,
                email=settings.auth_email,
                display_name=settings.auth_display_name,
            ),
        )

    def authenticate(self, email: str, password: str) -> Optional[Principal]:
        ok = hmac.compare_digest(email.encode(), self._email.encode()) and hmac.compare_digest(
            password.encode(), self._password.encode()
        )
        if not ok:
            logger.info("Login rejected for {}", email)
            return None
        logger.info("Login accepted for {}", email)
        return self._principal
