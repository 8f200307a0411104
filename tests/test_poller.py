"""Tests for message-group polling and result extraction."""
import pytest

from fleet_ace.errors import AcePollTimeout, AceQueryFailed, AceSchemaError
from fleet_ace.models import PollStatus
from fleet_ace.poller import (
    MAX_URL_SEARCH_DEPTH,
    build_payload,
    extract_result,
    find_csv_url,
    poll_until_done,
    resolve_status,
)

from conftest import message_group


def scripted_fetch(responses):
    """fetch() returning ``{"apiResult": {"results": [record]}}`` per call; None -> empty results."""
    calls = []

    async def fetch(chat_id, message_group_id):
        calls.append((chat_id, message_group_id))
        record = responses[min(len(calls), len(responses)) - 1]
        results = [] if record is None else [record]
        return {"apiResult": {"results": results}}

    fetch.calls = calls
    return fetch


DONE = message_group(
    "DONE",
    {
        "a": {"columns": ["x", "y"], "preview_array": [{"x": 1, "y": 2}]},
        "b": {"reasoning": "because", "total_row_count": 1},
    },
)


async def test_polls_until_done(fake_sleep, sleeps):
    fetch = scripted_fetch([message_group("IN_PROGRESS"), message_group("IN_PROGRESS"), DONE])

    payload = await poll_until_done(fetch, "chat-1", "mg-1", sleep=fake_sleep)

    assert len(fetch.calls) == 3
    assert fetch.calls[0] == ("chat-1", "mg-1")
    assert sleeps == [8.0, 5.0, 5.0]
    assert payload.status is PollStatus.DONE
    assert payload.columns == ["x", "y"]
    assert payload.preview_array == [{"x": 1, "y": 2}]
    assert payload.reasoning == "because"
    assert payload.total_row_count == 1


async def test_error_on_first_poll_fails_immediately(fake_sleep, sleeps):
    fetch = scripted_fetch([message_group("ERROR", message="bad prompt")])

    with pytest.raises(AceQueryFailed) as exc_info:
        await poll_until_done(fetch, "c", "m", sleep=fake_sleep)

    assert len(fetch.calls) == 1
    assert sleeps == [8.0]
    assert exc_info.value.status == "ERROR"
    assert "bad prompt" in str(exc_info.value)


async def test_failed_status_is_terminal(fake_sleep):
    fetch = scripted_fetch([message_group("IN_PROGRESS"), message_group("FAILED")])

    with pytest.raises(AceQueryFailed) as exc_info:
        await poll_until_done(fetch, "c", "m", sleep=fake_sleep)

    assert exc_info.value.status == "FAILED"
    assert len(fetch.calls) == 2


async def test_times_out_after_max_attempts(fake_sleep, sleeps):
    fetch = scripted_fetch([message_group("IN_PROGRESS")])

    with pytest.raises(AcePollTimeout) as exc_info:
        await poll_until_done(fetch, "c", "m", max_attempts=3, sleep=fake_sleep)

    assert len(fetch.calls) == 3
    assert sleeps == [8.0, 5.0, 5.0]
    assert exc_info.value.attempts == 3
    assert exc_info.value.elapsed_seconds == 18.0


async def test_unknown_status_keeps_polling(fake_sleep):
    fetch = scripted_fetch([message_group("QUEUED"), DONE])

    payload = await poll_until_done(fetch, "c", "m", sleep=fake_sleep)

    assert len(fetch.calls) == 2
    assert payload.columns == ["x", "y"]


async def test_empty_results_are_retried(fake_sleep):
    fetch = scripted_fetch([None, None, DONE])

    payload = await poll_until_done(fetch, "c", "m", sleep=fake_sleep)

    assert len(fetch.calls) == 3
    assert payload.preview_array == [{"x": 1, "y": 2}]


async def test_empty_results_on_every_attempt(fake_sleep):
    fetch = scripted_fetch([None])

    with pytest.raises(AceSchemaError, match="empty result after max polling attempts"):
        await poll_until_done(fetch, "c", "m", max_attempts=4, sleep=fake_sleep)

    assert len(fetch.calls) == 4


def test_extract_result_rejects_bad_shapes():
    assert extract_result(None) is None
    assert extract_result({"apiResult": None}) is None
    assert extract_result({"apiResult": {"results": []}}) is None
    assert extract_result({"apiResult": {"results": ["nope"]}}) is None
    assert extract_result({"apiResult": {"results": [{"a": 1}]}}) == {"a": 1}


def test_resolve_status_missing_levels():
    assert resolve_status({}) is PollStatus.IN_PROGRESS
    assert resolve_status({"message_group": {}}) is PollStatus.IN_PROGRESS
    assert resolve_status({"message_group": {"status": {}}}) is PollStatus.IN_PROGRESS
    assert resolve_status(message_group("done")) is PollStatus.DONE


def test_build_payload_takes_first_occurrence():
    result = {
        "message_group": {
            "messages": [
                {"columns": ["first"], "total_row_count": 0},
                {"columns": ["second"], "preview_array": [{"first": 1}], "total_row_count": 9},
            ]
        }
    }

    payload = build_payload(result)

    assert payload.columns == ["first"]
    assert payload.preview_array == [{"first": 1}]
    assert payload.total_row_count == 0
    assert payload.reasoning is None
    assert payload.download_url is None


def test_build_payload_finds_download_url():
    url = "https://storage.googleapis.com/ace-results/export-123?sig=abc"
    result = message_group("DONE", {"m": {"query": {"signed_urls": [url]}}})

    assert build_payload(result).download_url == url


def test_find_csv_url():
    assert find_csv_url({"a": [{"b": "https://files.example.com/out.csv"}]}) == "https://files.example.com/out.csv"
    assert find_csv_url({"a": "http://files.example.com/out.csv"}) is None
    assert find_csv_url({"a": "https://example.com/page.html"}) is None
    assert find_csv_url(42) is None


def test_find_csv_url_depth_guard():
    deep = "https://files.example.com/deep.csv"
    for _ in range(MAX_URL_SEARCH_DEPTH + 5):
        deep = [deep]
    assert find_csv_url(deep) is None

    shallow = "https://files.example.com/shallow.csv"
    for _ in range(5):
        shallow = {"next": shallow}
    assert find_csv_url(shallow) == "https://files.example.com/shallow.csv"


def test_build_payload_keeps_empty_lists_as_first_occurrence():
    result = {
        "message_group": {
            "messages": {
                "a": {"columns": [], "preview_array": []},
                "b": {"columns": ["late"], "preview_array": [{"late": 1}]},
            }
        }
    }

    payload = build_payload(result)

    assert payload.columns == []
    assert payload.preview_array == []
