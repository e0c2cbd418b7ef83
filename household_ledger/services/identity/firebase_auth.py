"""
Firebase Authentication via the Identity Toolkit REST API.

Only email/password sign-in is supported; accounts are created in the
Firebase console.
"""

import asyncio
from typing import Optional

import requests
import structlog

from household_ledger.config import get_settings
from household_ledger.config.settings import FirebaseSettings
from household_ledger.services.identity.interface import (
    AuthError,
    AuthErrorKind,
    IdentityProviderInterface,
    Session,
)

logger = structlog.get_logger(__name__)


# Error codes that mean "wrong email or password" rather than "service down"
CREDENTIAL_ERRORS = {
    "EMAIL_NOT_FOUND",
    "INVALID_PASSWORD",
    "INVALID_LOGIN_CREDENTIALS",
    "INVALID_EMAIL",
    "MISSING_PASSWORD",
    "USER_DISABLED",
}


def _error_code(response: requests.Response) -> str:
    """Identity Toolkit errors look like {"error": {"message": "CODE : detail"}}."""
    try:
        message = response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return ""
    return str(message).split(" ")[0].strip()


class FirebaseIdentityProvider(IdentityProviderInterface):
    """Email/password sign-in against Firebase Authentication."""

    def __init__(self, settings: Optional[FirebaseSettings] = None):
        super().__init__()
        self._settings = settings or get_settings().firebase

    def _post_sign_in(self, email: str, password: str) -> requests.Response:
        url = f"{self._settings.auth_endpoint}/accounts:signInWithPassword"
        return requests.post(
            url,
            params={"key": self._settings.api_key},
            json={
                "email": email,
                "password": password,
                "returnSecureToken": True,
            },
            timeout=self._settings.timeout_seconds,
        )

    async def sign_in(self, email: str, password: str) -> Session:
        try:
            response = await asyncio.to_thread(self._post_sign_in, email, password)
        except requests.RequestException as e:
            logger.warning("auth_request_failed", error=str(e))
            raise AuthError(
                "Could not reach the sign-in service. Check your connection.",
                AuthErrorKind.UNAVAILABLE,
            )

        if response.status_code != 200:
            code = _error_code(response)
            if code in CREDENTIAL_ERRORS:
                raise AuthError("Invalid email or password.", AuthErrorKind.INVALID_CREDENTIAL)
            logger.warning("auth_rejected", status=response.status_code, code=code)
            raise AuthError(
                f"Sign-in is unavailable right now ({code or response.status_code}).",
                AuthErrorKind.UNAVAILABLE,
            )

        try:
            body = response.json()
            session = Session(
                user_id=body["localId"],
                email=body.get("email", email),
                id_token=body.get("idToken", ""),
            )
        except (ValueError, KeyError) as e:
            raise AuthError(
                f"Unexpected sign-in response: {e}",
                AuthErrorKind.UNAVAILABLE,
            )

        logger.info("auth_signed_in", user_id=session.user_id)
        self._set_session(session)
        return session

    async def sign_out(self) -> None:
        if self._session is not None:
            logger.info("auth_signed_out", user_id=self._session.user_id)
            self._set_session(None)
