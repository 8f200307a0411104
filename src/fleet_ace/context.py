"""Composition root: one object owning everything an Ace caller needs.

Replaces module-level session/cache globals. Build one ``AceContext`` per
process (``AceContext.from_env()``), hand it to the functions in
``fleet_ace.insights``, and ``reset()`` it between tests or demo runs.
"""

from __future__ import annotations

import asyncio

import httpx

from fleet_ace.ace_client import AceClient
from fleet_ace.api_tracker import ApiTracker
from fleet_ace.auth import GeotabAuth
from fleet_ace.config import Settings
from fleet_ace.fallback import FallbackCache
from fleet_ace.models import Insight
from fleet_ace.poller import Sleep


class AceContext:
    """Settings, auth, HTTP client, Ace client, fallback cache and the query gate."""

    def __init__(
        self,
        settings: Settings,
        auth: GeotabAuth | None = None,
        http: httpx.AsyncClient | None = None,
        cache: FallbackCache | None = None,
        tracker: ApiTracker | None = None,
        sleep: Sleep = asyncio.sleep,
        **client_options,
    ) -> None:
        self.settings = settings
        self.tracker = tracker or ApiTracker(settings.tracker_db)
        self.auth = auth or GeotabAuth(settings)
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=settings.http_timeout)
        self.cache = cache or FallbackCache(
            settings.fallback_dir,
            demo_mode=settings.demo_mode,
            tracker=self.tracker,
        )
        self.client = AceClient(
            self.auth,
            self.http,
            tracker=self.tracker,
            timeout=settings.http_timeout,
            sleep=sleep,
            **client_options,
        )
        # Ace does not tolerate concurrent chats; one query at a time.
        self.gate = asyncio.Lock()

    @classmethod
    def from_env(cls, **kwargs) -> AceContext:
        return cls(Settings.from_env(), **kwargs)

    async def query(self, question: str) -> Insight:
        """Run one Ace question, waiting for any query already in flight."""
        async with self.gate:
            return await self.client.query(question)

    def reset(self) -> None:
        """Forget cached answers and the MyGeotab session."""
        self.cache.clear()
        self.auth.clear()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> AceContext:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
