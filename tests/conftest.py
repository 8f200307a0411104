"""
Pytest fixtures for fleet-ace tests.

A scripted in-process Ace server (httpx.MockTransport) stands in for
MyGeotab, and every wait goes through a recording sleep so no test waits
in real time.
"""
import json

import httpx
import pytest

from fleet_ace.auth import Credentials
from fleet_ace.config import Settings
from fleet_ace.context import AceContext

ACE_HOST = "ace.test"

DEFAULT_COLUMNS = ["device_name", "total_distance_km", "trip_count"]
DEFAULT_ROWS = [
    {"device_name": "Truck 1", "total_distance_km": 812.4, "trip_count": 31},
    {"device_name": "Truck 2", "total_distance_km": 640.0, "trip_count": 27},
    {"device_name": "Van 5", "total_distance_km": 402.9, "trip_count": 44},
]


def ace_ok(record: dict) -> dict:
    """Wrap one result record in a GetAceResults success envelope."""
    return {"result": {"apiResult": {"results": [record]}}}


def message_group(status: str, messages: dict | None = None, message: str | None = None) -> dict:
    status_obj = {"status": status}
    if message:
        status_obj["message"] = message
    return {"message_group": {"id": "mg-1", "status": status_obj, "messages": messages or {}}}


class StubAuth:
    """GeotabAuth stand-in that never touches the network."""

    def __init__(self):
        self.logins = 0
        self.cleared = 0
        self._credentials = None

    async def get_credentials(self) -> Credentials:
        if self._credentials is None:
            self.logins += 1
            self._credentials = Credentials("demo_db", "ops@example.com", f"sess-{self.logins}", ACE_HOST)
        return self._credentials

    def clear(self) -> None:
        self.cleared += 1
        self._credentials = None


class FakeAce:
    """Scripted GetAceResults endpoint.

    ``answer(question)`` returns ``(columns, rows)`` for a DONE answer, or
    None to report status ERROR. ``statuses`` is consumed once per
    get-message-group call before the final DONE/ERROR record.
    """

    def __init__(self, answer=None, statuses=(), create_chat=None, unreachable=False):
        self.answer = answer or (lambda question: (DEFAULT_COLUMNS, DEFAULT_ROWS))
        self.statuses = list(statuses)
        self.create_chat_responses = list(create_chat or [])
        self.unreachable = unreachable
        self.calls: list[str] = []
        self.bodies: list[dict] = []
        self.urls: list[str] = []
        self.prompts: list[str] = []

    def count(self, function_name: str) -> int:
        return self.calls.count(function_name)

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        body = json.loads(request.content)
        fn = body["params"]["functionName"]
        self.calls.append(fn)
        self.bodies.append(body)
        self.urls.append(str(request.url))

        if fn == "create-chat":
            if self.create_chat_responses:
                return self.create_chat_responses.pop(0)
            return httpx.Response(200, json=ace_ok({"chat_id": f"chat-{self.count('create-chat')}"}))

        if fn == "send-prompt":
            self.prompts.append(body["params"]["functionParameters"]["content"])
            return httpx.Response(200, json=ace_ok({"message_group_id": f"mg-{len(self.prompts)}"}))

        if fn == "get-message-group":
            if self.statuses:
                return httpx.Response(200, json=ace_ok(message_group(self.statuses.pop(0))))
            answer = self.answer(self.prompts[-1])
            if answer is None:
                return httpx.Response(200, json=ace_ok(message_group("ERROR", message="query rejected")))
            columns, rows = answer
            messages = {
                "m1": {"type": "COT", "reasoning": "Summed trips per device."},
                "m2": {"type": "USER_DATA_REFERENCE", "columns": columns, "preview_array": rows},
            }
            return httpx.Response(200, json=ace_ok(message_group("DONE", messages)))

        return httpx.Response(200, json={"error": {"message": f"unknown function {fn}"}})


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sleeps():
    """List of every delay passed to the injected sleep."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_ace():
    return FakeAce()


@pytest.fixture
def stub_auth():
    return StubAuth()


@pytest.fixture
async def http(fake_ace):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_ace.handler)) as client:
        yield client


@pytest.fixture
def settings(tmp_path):
    fallback_dir = tmp_path / "fallback"
    fallback_dir.mkdir()
    return Settings(
        database="demo_db",
        username="ops@example.com",
        password="secret",
        server=ACE_HOST,
        fallback_dir=fallback_dir,
        tracker_db=None,
    )


@pytest.fixture
async def ace_ctx(settings, stub_auth, http, fake_sleep):
    ctx = AceContext(settings, auth=stub_auth, http=http, sleep=fake_sleep)
    yield ctx
    await ctx.aclose()


def write_fallback(directory, key: str, data) -> None:
    (directory / key).write_text(json.dumps(data), encoding="utf-8")
