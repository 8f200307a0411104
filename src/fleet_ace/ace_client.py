"""Geotab Ace client: one natural-language question end to end.

Lifecycle per query:
  1. create-chat        -> chat_id (retried, Ace sometimes omits the id)
  2. send-prompt        -> message_group_id
  3. get-message-group  -> polled until DONE (see ``fleet_ace.poller``)

``customerData: true`` goes into every GetAceResults call; without it Ace
answers with an empty success instead of an error. Ace sessions do not
tolerate concurrent chats, so run one query at a time (``AceContext.query``
holds a lock for that).
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any

import httpx

from fleet_ace.api_tracker import ApiTracker
from fleet_ace.auth import Credentials, GeotabAuth
from fleet_ace.errors import (
    AceApiError,
    AceError,
    AceSchemaError,
    AceSessionError,
    AceTransportError,
)
from fleet_ace.models import Insight
from fleet_ace.poller import (
    FIRST_POLL_DELAY,
    MAX_ATTEMPTS,
    POLL_INTERVAL,
    Sleep,
    poll_until_done,
)

ACE_SERVICE_NAME = "dna-planet-orchestration"

CREATE_CHAT_RETRIES = 3
CREATE_CHAT_RETRY_DELAY = 3.0

_SESSION_ERROR_MARKERS = ("InvalidUser", "InvalidSession", "session expired")


class AceClient:
    """Stateless executor for Ace questions. All failures are raised."""

    def __init__(
        self,
        auth: GeotabAuth,
        http: httpx.AsyncClient,
        tracker: ApiTracker | None = None,
        timeout: float = 30.0,
        sleep: Sleep = asyncio.sleep,
        first_poll_delay: float = FIRST_POLL_DELAY,
        poll_interval: float = POLL_INTERVAL,
        max_poll_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self._auth = auth
        self._http = http
        self._tracker = tracker or ApiTracker(None)
        self._timeout = timeout
        self._sleep = sleep
        self._first_poll_delay = first_poll_delay
        self._poll_interval = poll_interval
        self._max_poll_attempts = max_poll_attempts

    async def query(self, question: str) -> Insight:
        """Ask Ace a question and block until the answer is ready (30-90 s typical)."""
        await self._auth.get_credentials()

        chat_id = await self.create_chat()
        message_group_id = await self.send_prompt(chat_id, question)
        print(f"[ace] chat {chat_id} / group {message_group_id}: {question[:60]}", flush=True)

        result = await poll_until_done(
            self.fetch_message_group,
            chat_id,
            message_group_id,
            first_delay=self._first_poll_delay,
            interval=self._poll_interval,
            max_attempts=self._max_poll_attempts,
            sleep=self._sleep,
        )

        return Insight(
            id=str(uuid.uuid4()),
            question=question,
            columns=result.columns or [],
            rows=result.preview_array or [],
            reasoning=result.reasoning,
            queried_at=datetime.now(timezone.utc).isoformat(),
            total_row_count=result.total_row_count,
            download_url=result.download_url,
        )

    async def create_chat(self) -> str:
        """Open a chat session, retrying transport errors and id-less successes."""
        last_error: AceError | None = None
        soft_failure = False

        for attempt in range(1, CREATE_CHAT_RETRIES + 1):
            try:
                result = await self._ace_call("create-chat", {})
                chat_id = result.get("chat_id")
                if chat_id:
                    return str(chat_id)
                soft_failure = True
                last_error = None
            except AceError as e:
                soft_failure = False
                last_error = e

            print(f"[ace] create-chat attempt {attempt}/{CREATE_CHAT_RETRIES} failed", flush=True)
            if attempt < CREATE_CHAT_RETRIES:
                await self._sleep(CREATE_CHAT_RETRY_DELAY)

        if soft_failure:
            raise AceSessionError(
                f"Ace create-chat succeeded but returned no chat_id after "
                f"{CREATE_CHAT_RETRIES} attempts (Ace may not be enabled; "
                "check Admin > Beta Features)",
                attempts=CREATE_CHAT_RETRIES,
            )
        raise AceSessionError(
            f"Ace create-chat failed after {CREATE_CHAT_RETRIES} attempts: {last_error}",
            attempts=CREATE_CHAT_RETRIES,
        ) from last_error

    async def send_prompt(self, chat_id: str, content: str) -> str:
        """Submit the question; returns the message group id."""
        result = await self._ace_call("send-prompt", {"chat_id": chat_id, "content": content})

        # Both shapes are seen in the wild: top-level id first, then nested.
        mg_id = result.get("message_group_id")
        if not mg_id:
            msg_group = result.get("message_group")
            if isinstance(msg_group, dict):
                mg_id = msg_group.get("id")
        if not mg_id:
            raise AceSchemaError("Ace send-prompt returned no message_group_id")
        return str(mg_id)

    async def fetch_message_group(self, chat_id: str, message_group_id: str) -> Any:
        """Raw ``result`` of one get-message-group call (interpreted by the poller)."""
        return await self._post(
            "get-message-group",
            {"chat_id": chat_id, "message_group_id": message_group_id},
        )

    async def _ace_call(self, function_name: str, function_params: dict) -> dict:
        """GetAceResults call that must yield at least one result record."""
        result = await self._post(function_name, function_params)
        api_result = result.get("apiResult") if isinstance(result, dict) else None
        results = api_result.get("results") if isinstance(api_result, dict) else None
        if not results:
            raise AceSchemaError(f"Ace {function_name}: empty results array")
        first = results[0]
        if not isinstance(first, dict):
            raise AceSchemaError(f"Ace {function_name}: unexpected result record")
        return first

    async def _post(self, function_name: str, function_params: dict) -> Any:
        credentials = await self._auth.get_credentials()
        try:
            return await self._post_once(credentials, function_name, function_params)
        except AceApiError as e:
            if not _is_session_error(e):
                raise
            print(f"[ace] session rejected during {function_name}, re-authenticating", flush=True)
            self._auth.clear()
            credentials = await self._auth.get_credentials()
            return await self._post_once(credentials, function_name, function_params)

    async def _post_once(
        self, credentials: Credentials, function_name: str, function_params: dict
    ) -> Any:
        payload = {
            "method": "GetAceResults",
            "params": {
                "serviceName": ACE_SERVICE_NAME,
                "functionName": function_name,
                "customerData": True,
                "functionParameters": function_params,
                "credentials": credentials.as_params(),
            },
        }
        url = f"https://{credentials.server}/apiv1"

        with self._tracker.track("ace", f"ace_{function_name}"):
            try:
                resp = await self._http.post(url, json=payload, timeout=self._timeout)
            except httpx.HTTPError as e:
                raise AceTransportError(
                    f"Ace {function_name} request failed: {e.__class__.__name__}: {e}"
                ) from e

            if resp.status_code >= 400:
                raise AceTransportError(
                    f"Ace HTTP {resp.status_code}: {resp.reason_phrase}"
                )
            try:
                data = resp.json()
            except ValueError as e:
                raise AceTransportError(f"Ace {function_name}: response is not JSON") from e

            if not isinstance(data, dict):
                raise AceTransportError(f"Ace {function_name}: unexpected response body")
            if data.get("error"):
                raise AceApiError(_error_message(data["error"]), _error_names(data["error"]))
            return data.get("result") or {}


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        message = error.get("message")
        if message:
            return str(message)
        name = error.get("name")
        if name:
            return str(name)
    return str(error)


def _error_names(error: Any) -> tuple[str, ...]:
    if not isinstance(error, dict):
        return ()
    names = [error.get("name")]
    for inner in error.get("errors") or []:
        if isinstance(inner, dict):
            names.append(inner.get("name"))
    return tuple(str(n) for n in names if n)


def _is_session_error(error: AceApiError) -> bool:
    haystack = " ".join((str(error),) + error.error_names).lower()
    return any(marker.lower() in haystack for marker in _SESSION_ERROR_MARKERS)
