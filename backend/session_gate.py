"""
Session gate for the admin panel.

The panel has a single administrator whose email and password come from the
environment. Signing in returns a bearer token that never expires; it stops
working only after an explicit sign-out. This is a placeholder and must be
replaced by a real identity service before production use.
"""

import secrets
from typing import Optional, Set

from flask_jwt_extended import create_access_token

ADMIN_ROLE = "admin"


class ConfigurationError(RuntimeError):
    pass


class InvalidCredentials(Exception):
    pass


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def has_admin_claim(claims) -> bool:
    if not isinstance(claims, dict):
        return False
    return str(claims.get("role") or "").strip().lower() == ADMIN_ROLE


class SessionGate:
    """Checks the configured admin credentials and issues session tokens.

    Sessions never expire, so signed-out token ids are kept in memory and the
    revocation set grows for the lifetime of the process. A restart forgets
    it. Persist revocations before running more than one worker.
    """

    def __init__(self, admin_email: Optional[str], admin_password: Optional[str]):
        if not admin_email or not admin_password:
            raise ConfigurationError(
                "ADMIN_EMAIL and ADMIN_PASSWORD must be set to start the admin panel."
            )
        self.admin_email = normalize_email(admin_email)
        self._admin_password = str(admin_password)
        self._revoked: Set[str] = set()

    def credentials_match(self, email: Optional[str], password: Optional[str]) -> bool:
        email_matches = secrets.compare_digest(
            normalize_email(email).encode("utf-8"), self.admin_email.encode("utf-8")
        )
        password_matches = secrets.compare_digest(
            str(password or "").encode("utf-8"), self._admin_password.encode("utf-8")
        )
        return email_matches and password_matches

    def sign_in(self, email: Optional[str], password: Optional[str]) -> str:
        if not self.credentials_match(email, password):
            raise InvalidCredentials("Invalid credentials")
        return create_access_token(
            identity=self.admin_email,
            additional_claims={"role": ADMIN_ROLE},
            expires_delta=False,
        )

    def sign_out(self, jti: str) -> None:
        self._revoked.add(jti)

    def is_revoked(self, jti: Optional[str]) -> bool:
        return bool(jti) and jti in self._revoked
