"""Two-tier cache in front of slow or unreliable producers.

  1. In-memory entries, fresh while ``now - cached_at < ttl``.
  2. Static JSON files in the fallback directory (``<fallback_dir>/<key>``),
     read when the live call fails and memory holds nothing.

Normal flow for ``with_fallback(producer, key, ttl)``:

  1. Fresh memory entry -> return it, producer not called.
  2. Await the producer; on success store and return it.
  3. On failure, serve the stale memory entry if there is one.
  4. Otherwise load the fallback file and seed memory with it.
  5. Otherwise re-raise the producer's error unchanged.

Demo mode skips steps 2 and 3 entirely: no live call is ever attempted.

A fallback file holds exactly what the producer returns (after ``decode``),
with no envelope around it.

Do not reuse one key across an expanding lookback (7, then 30, then 90
days): an empty-but-successful narrow result would be cached and served for
every wider window. Use one key per window, or skip the cache.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Awaitable, Callable

from fleet_ace.api_tracker import ApiTracker
from fleet_ace.errors import DemoFallbackMissing
from fleet_ace.models import CacheEntry, CacheResult

DEFAULT_TTL = 5 * 60

# Ace queries take 30-90 s, so hold their answers longer.
ACE_TTL = 30 * 60

# A file-fallback entry starts this fraction of a TTL old, so the next call
# retries the live producer after half a TTL instead of a full one.
STALE_SEED_FRACTION = 0.5


class FallbackCache:
    """Process-wide key -> ``CacheEntry`` store with stale and file fallback."""

    def __init__(
        self,
        fallback_dir: Path | str,
        demo_mode: bool = False,
        tracker: ApiTracker | None = None,
        clock: Callable[[], float] = time.time,
        stale_seed_fraction: float = STALE_SEED_FRACTION,
    ) -> None:
        self.fallback_dir = Path(fallback_dir)
        self.demo_mode = demo_mode
        self._tracker = tracker or ApiTracker(None)
        self._clock = clock
        self._stale_seed_fraction = stale_seed_fraction
        self._store: dict[str, CacheEntry] = {}

    async def with_fallback(
        self,
        producer: Callable[[], Awaitable[Any]],
        key: str,
        ttl: float = DEFAULT_TTL,
        decode: Callable[[Any], Any] | None = None,
    ) -> CacheResult:
        """Run ``producer`` behind the memory cache and the file fallback.

        Args:
            producer: Zero-argument coroutine function producing fresh data.
            key: Cache key; also the fallback filename.
            ttl: Freshness window in seconds for this call site.
            decode: Converts parsed fallback JSON into the producer's type.

        Returns:
            ``CacheResult(data, from_cache)``; ``from_cache`` is True for every
            memory hit, stale serve and file fallback.
        """
        entry = self._store.get(key)

        if entry is not None and self._clock() - entry.cached_at < ttl:
            self._tracker.log_call("cache", key, "hit", 0, cached=True)
            return CacheResult(entry.data, True)

        if self.demo_mode:
            data = self._load_decoded(key, decode)
            if data is None:
                raise DemoFallbackMissing(key)
            self._store[key] = CacheEntry(data, self._clock())
            self._tracker.log_call("cache", key, "demo_fallback", 0, cached=True)
            return CacheResult(data, True)

        try:
            data = await producer()
        except Exception as live_err:
            if entry is not None:
                print(
                    f'[cache] Live call failed for "{key}", serving stale cache. Error: {live_err}',
                    flush=True,
                )
                self._tracker.log_call("cache", key, "stale_fallback", 0, cached=True)
                return CacheResult(entry.data, True)

            data = self._load_decoded(key, decode)
            if data is not None:
                seeded_at = self._clock() - ttl * self._stale_seed_fraction
                self._store[key] = CacheEntry(data, seeded_at)
                print(f'[cache] Using file fallback for "{key}".', flush=True)
                self._tracker.log_call("cache", key, "file_fallback", 0, cached=True)
                return CacheResult(data, True)

            raise

        self._store[key] = CacheEntry(data, self._clock())
        return CacheResult(data, False)

    def set_entry(self, key: str, data: Any) -> None:
        """Seed the memory cache without a producer (e.g. after a background prefetch)."""
        self._store[key] = CacheEntry(data, self._clock())

    def get_entry(self, key: str) -> CacheEntry | None:
        return self._store.get(key)

    def invalidate(self, key: str) -> None:
        """Drop one entry so the next call goes live."""
        self._store.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``. Returns count removed."""
        doomed = [k for k in self._store if k.startswith(prefix)]
        for k in doomed:
            del self._store[k]
        return len(doomed)

    def clear(self) -> None:
        self._store.clear()

    def keys(self) -> list[str]:
        return list(self._store)

    def load_file_fallback(self, key: str) -> Any | None:
        """Parse ``<fallback_dir>/<key>`` as JSON; None if missing or unreadable."""
        if not key or Path(key).name != key:
            return None
        path = self.fallback_dir / key
        try:
            with path.open(encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            print(f'[cache] Ignoring unreadable fallback file "{path}": {e}', flush=True)
            return None

    def _load_decoded(self, key: str, decode: Callable[[Any], Any] | None) -> Any | None:
        raw = self.load_file_fallback(key)
        if raw is None or decode is None:
            return raw
        try:
            return decode(raw)
        except (TypeError, ValueError, KeyError) as e:
            print(f'[cache] Fallback file for "{key}" has the wrong shape: {e}', flush=True)
            return None
