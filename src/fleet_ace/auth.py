"""MyGeotab authentication for Ace calls.

Sessions are reused for 23 hours, safely inside Geotab's ~24 h session
lifetime. ``clear()`` forces the next call to log in again.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

import mygeotab
from mygeotab import AuthenticationException, MyGeotabException

from fleet_ace.config import Settings
from fleet_ace.errors import AceTransportError, CredentialsError

SESSION_TTL = 23 * 60 * 60


@dataclass(frozen=True)
class Credentials:
    database: str
    user_name: str
    session_id: str
    server: str

    def as_params(self) -> dict:
        """Credentials block expected inside every MyGeotab request."""
        return {
            "database": self.database,
            "sessionId": self.session_id,
            "userName": self.user_name,
        }


class GeotabAuth:
    """Authenticate with MyGeotab through the ``mygeotab`` SDK and cache the session."""

    def __init__(
        self,
        settings: Settings,
        api_factory: Callable[..., mygeotab.API] = mygeotab.API,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._api_factory = api_factory
        self._clock = clock
        self._credentials: Credentials | None = None
        self._expires_at: float = 0.0

    async def get_credentials(self) -> Credentials:
        """Return the cached session, logging in first if it is missing or expired."""
        if self._credentials is not None and self._clock() < self._expires_at:
            return self._credentials
        # requests and mygeotab transport errors are OSError subclasses
        try:
            self._credentials = await asyncio.to_thread(self._authenticate)
        except (AuthenticationException, MyGeotabException, OSError) as e:
            raise AceTransportError(
                f"MyGeotab authentication failed: {e.__class__.__name__}: {e}"
            ) from e
        self._expires_at = self._clock() + SESSION_TTL
        return self._credentials

    def _authenticate(self) -> Credentials:
        s = self._settings
        if not s.has_credentials:
            raise CredentialsError(
                "Missing credentials. Set GEOTAB_DATABASE, GEOTAB_USERNAME, "
                "and GEOTAB_PASSWORD environment variables."
            )

        api = self._api_factory(
            username=s.username,
            password=s.password,
            database=s.database,
            server=s.server,
            timeout=60,
        )
        credentials = api.authenticate()
        print(f"[auth] Authenticated {s.username} on {credentials.server}", flush=True)
        return Credentials(
            database=credentials.database,
            user_name=credentials.username,
            session_id=credentials.session_id,
            server=credentials.server or s.server,
        )

    def clear(self) -> None:
        """Drop the cached session (e.g. after an InvalidUserException)."""
        self._credentials = None
        self._expires_at = 0.0
