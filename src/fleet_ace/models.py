"""Data types shared by the Ace client, poller and fallback cache."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Generic, NamedTuple, TypeVar

T = TypeVar("T")


class PollStatus(str, enum.Enum):
    """Status of an Ace message group."""

    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    FAILED = "FAILED"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self is not PollStatus.IN_PROGRESS

    @classmethod
    def parse(cls, raw: object) -> PollStatus:
        """Map a raw status string to a member; unknown values count as in progress."""
        if isinstance(raw, str):
            try:
                return cls(raw.strip().upper())
            except ValueError:
                pass
        return cls.IN_PROGRESS


@dataclass
class ResultPayload:
    """Fields gathered from the messages of a DONE message group."""

    status: PollStatus = PollStatus.DONE
    columns: list[str] | None = None
    preview_array: list[dict[str, Any]] | None = None
    reasoning: str | None = None
    total_row_count: int | None = None
    download_url: str | None = None


@dataclass
class Insight:
    """Normalised, cache-ready answer to one Ace question."""

    id: str
    question: str
    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    reasoning: str | None = None
    queried_at: str = ""
    total_row_count: int | None = None
    download_url: str | None = None
    from_cache: bool | None = None

    def to_dict(self) -> dict:
        """Serialise to the camelCase shape used by fallback files."""
        data: dict[str, Any] = {
            "id": self.id,
            "question": self.question,
            "columns": list(self.columns),
            "rows": [dict(r) for r in self.rows],
            "queriedAt": self.queried_at,
        }
        if self.reasoning is not None:
            data["reasoning"] = self.reasoning
        if self.total_row_count is not None:
            data["totalRowCount"] = self.total_row_count
        if self.download_url is not None:
            data["downloadUrl"] = self.download_url
        if self.from_cache is not None:
            data["fromCache"] = self.from_cache
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Insight:
        """Build an Insight from a fallback file or ``to_dict()`` output.

        Accepts camelCase or snake_case keys, and ``previewArray`` as an
        alias for ``rows``.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Insight data must be a JSON object, got {type(data).__name__}")

        def pick(*names: str, default: Any = None) -> Any:
            for name in names:
                if name in data and data[name] is not None:
                    return data[name]
            return default

        return cls(
            id=str(pick("id", default="")),
            question=str(pick("question", default="")),
            columns=list(pick("columns", default=[])),
            rows=list(pick("rows", "previewArray", "preview_array", default=[])),
            reasoning=pick("reasoning"),
            queried_at=str(pick("queriedAt", "queried_at", default="")),
            total_row_count=pick("totalRowCount", "total_row_count"),
            download_url=pick("downloadUrl", "download_url"),
            from_cache=pick("fromCache", "from_cache"),
        )


@dataclass
class CacheEntry(Generic[T]):
    data: T
    cached_at: float


class CacheResult(NamedTuple):
    """Value returned by ``FallbackCache.with_fallback``."""

    data: Any
    from_cache: bool
