"""Poll an Ace message group until it reaches a terminal status.

Timing follows the Ace documentation: wait 8 s after send-prompt, then
poll every 5 s, at most 30 times (~2.5 min, which covers the usual
30-90 s Ace range). The interval is fixed on purpose.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from fleet_ace.errors import AcePollTimeout, AceQueryFailed, AceSchemaError
from fleet_ace.models import PollStatus, ResultPayload

FIRST_POLL_DELAY = 8.0
POLL_INTERVAL = 5.0
MAX_ATTEMPTS = 30

# Remote schema is untrusted; bound the URL search.
MAX_URL_SEARCH_DEPTH = 32

FetchMessageGroup = Callable[[str, str], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[None]]


async def poll_until_done(
    fetch: FetchMessageGroup,
    chat_id: str,
    message_group_id: str,
    first_delay: float = FIRST_POLL_DELAY,
    interval: float = POLL_INTERVAL,
    max_attempts: int = MAX_ATTEMPTS,
    sleep: Sleep = asyncio.sleep,
) -> ResultPayload:
    """Poll ``get-message-group`` until DONE and return the gathered payload.

    Args:
        fetch: Coroutine ``fetch(chat_id, message_group_id)`` returning the raw
            ``result`` object of one get-message-group response.
        chat_id: Session handle from create-chat.
        message_group_id: Submission handle from send-prompt.
        first_delay: Seconds to wait before the first poll.
        interval: Seconds between subsequent polls.
        max_attempts: Maximum number of status fetches.
        sleep: Awaitable used for every wait (injectable for tests).

    Raises:
        AceQueryFailed: Ace reported FAILED or ERROR.
        AceSchemaError: No result record appeared in any response.
        AcePollTimeout: Still in progress after ``max_attempts`` fetches.
    """
    await sleep(first_delay)

    for attempt in range(1, max_attempts + 1):
        raw = await fetch(chat_id, message_group_id)
        result = extract_result(raw)

        if result is None:
            if attempt < max_attempts:
                await sleep(interval)
                continue
            raise AceSchemaError("Ace: empty result after max polling attempts")

        status = resolve_status(result)

        if status is PollStatus.DONE:
            print(f"[poll] {message_group_id} done after {attempt} poll(s)", flush=True)
            return build_payload(result)

        if status in (PollStatus.FAILED, PollStatus.ERROR):
            raise AceQueryFailed(status.value, _status_message(result))

        if attempt < max_attempts:
            await sleep(interval)

    elapsed = first_delay + (max_attempts - 1) * interval
    raise AcePollTimeout(max_attempts, elapsed)


def extract_result(raw: Any) -> dict | None:
    """Return ``apiResult.results[0]`` if it is present and is an object."""
    if not isinstance(raw, dict):
        return None
    api_result = raw.get("apiResult")
    if not isinstance(api_result, dict):
        return None
    results = api_result.get("results")
    if not isinstance(results, list) or not results:
        return None
    first = results[0]
    return first if isinstance(first, dict) else None


def resolve_status(result: dict) -> PollStatus:
    """Read ``message_group.status.status``; any missing level means IN_PROGRESS."""
    mg = result.get("message_group")
    if not isinstance(mg, dict):
        return PollStatus.IN_PROGRESS
    status_obj = mg.get("status")
    if not isinstance(status_obj, dict):
        return PollStatus.IN_PROGRESS
    return PollStatus.parse(status_obj.get("status"))


def build_payload(result: dict) -> ResultPayload:
    """Gather the first occurrence of each field across all messages.

    An empty ``preview_array`` or ``columns`` list still counts as present.
    """
    payload = ResultPayload(status=PollStatus.DONE)

    for msg in _iter_messages(result):
        if msg.get("preview_array") is not None and payload.preview_array is None:
            payload.preview_array = msg["preview_array"]
        if msg.get("columns") is not None and payload.columns is None:
            payload.columns = msg["columns"]
        if msg.get("reasoning") and payload.reasoning is None:
            payload.reasoning = msg["reasoning"]
        if msg.get("total_row_count") is not None and payload.total_row_count is None:
            payload.total_row_count = msg["total_row_count"]

    # The signed CSV link moves around between Ace releases.
    payload.download_url = find_csv_url(result)
    return payload


def find_csv_url(obj: Any, depth: int = 0) -> str | None:
    """Depth-first search for a signed CSV / Cloud Storage URL anywhere in ``obj``."""
    if depth > MAX_URL_SEARCH_DEPTH:
        return None
    if isinstance(obj, str):
        if obj.startswith("https://") and (".csv" in obj or "storage.googleapis.com" in obj):
            return obj
        return None
    if isinstance(obj, dict):
        children = obj.values()
    elif isinstance(obj, (list, tuple)):
        children = obj
    else:
        return None
    for child in children:
        found = find_csv_url(child, depth + 1)
        if found:
            return found
    return None


def _iter_messages(result: dict):
    mg = result.get("message_group")
    if not isinstance(mg, dict):
        return
    messages = mg.get("messages") or {}
    values = messages.values() if isinstance(messages, dict) else messages
    for msg in values:
        if isinstance(msg, dict):
            yield msg


def _status_message(result: dict) -> str | None:
    status_obj = (result.get("message_group") or {}).get("status") or {}
    message = status_obj.get("message") if isinstance(status_obj, dict) else None
    return message if isinstance(message, str) and message else None
