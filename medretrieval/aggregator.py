"""
Source Aggregator
Concurrent fan-out over every source adapter with per-source timeouts, a shared
TTL cache, first-occurrence de-duplication and priority/date ranking.
"""
import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .cache import TTLCache, make_cache_key
from .config import DEFAULT_SOURCE_PRIORITY, SOURCE_PRIORITY, settings
from .exceptions import SourceTimeoutError
from .logging_config import get_logger, timed
from .models import KnowledgeItem
from .sources import SourceAdapter, default_adapters

log = get_logger("aggregator")

# (source name, outcome, seconds) with outcome in ok / timeout / error / cache_hit
SourceObserver = Callable[[str, str, float], None]

_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m", "%Y %b %d", "%Y %b", "%Y %B %d", "%Y %B", "%B %d, %Y", "%Y")
_EPOCH = datetime(1, 1, 1)


def normalize_query(query: Optional[str], max_length: int = None) -> str:
    max_length = max_length or settings.max_query_length
    return str(query or "").strip()[:max_length].strip()


def _parse_loose_date(text: str) -> Optional[datetime]:
    # PubMed style "2023 Jan 5-12" or "2023 Spring": fall back to the parseable prefix
    head = re.split(r"[-;]", text, maxsplit=1)[0].strip()
    for candidate in (text, head):
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt)
            except ValueError:
                continue
    year = re.match(r"^(\d{4})\b", text)
    if year:
        return datetime(int(year.group(1)), 1, 1)
    return None


def parse_item_date(value: Optional[str]) -> Optional[datetime]:
    """Best-effort parse of the date formats returned by the sources; None if unparseable."""
    if not value:
        return None
    text = str(value).strip()
    try:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = _parse_loose_date(text)
            if parsed is None:
                return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    except (ValueError, OverflowError):
        # year 0, or a shift to UTC that leaves the datetime range
        return None
    return parsed


def _rank_key(item: KnowledgeItem):
    parsed = parse_item_date(item.date)
    if parsed is None:
        return (-item.priority, 1, 0.0)
    return (-item.priority, 0, -(parsed - _EPOCH).total_seconds())


def rank_items(items: Sequence[KnowledgeItem]) -> List[KnowledgeItem]:
    """
    Sort by priority (high first), then by date (newest first).

    Undated items come after dated peers of the same priority. The sort is
    stable, so undated items keep their merge order.
    """
    return sorted(items, key=_rank_key)


def merge_items(batches: Sequence[Sequence[KnowledgeItem]]) -> List[KnowledgeItem]:
    """Flatten per-source batches in source order; the first item per url/id/title wins."""
    seen = set()
    merged = []
    for batch in batches:
        for item in batch:
            key = item.dedup_key
            if not key or key in seen:
                continue
            seen.add(key)
            priority = SOURCE_PRIORITY.get(item.source, DEFAULT_SOURCE_PRIORITY)
            merged.append(item.model_copy(update={"priority": priority}))
    return merged


def format_context(items: Sequence[KnowledgeItem]) -> str:
    """Render ranked items as the context block handed to the answer generator."""
    if not items:
        return "No external medical sources were found for this query."

    parts = []
    for i, item in enumerate(items, 1):
        header = f"[{i}] {item.title or 'Untitled'} ({item.source}"
        header += f", {item.date})" if item.date else ")"
        lines = [header]
        if item.summary:
            lines.append(item.summary)
        if item.url:
            lines.append(item.url)
        parts.append("\n".join(lines))
    return "\n\n".join(parts)


class SourceAggregator:
    """
    Fan-out/fan-in over a fixed list of source adapters.

    Each source runs as its own task; a failure or timeout in one never
    cancels the others, and the aggregation waits for every task to settle
    before merging. A timed-out call keeps running on its worker thread but
    its result is dropped and never cached.
    """

    def __init__(
        self,
        adapters: Optional[List[SourceAdapter]] = None,
        cache: Optional[TTLCache] = None,
        timeout_seconds: float = None,
        max_per_source: int = None,
        max_results: int = None,
        observer: Optional[SourceObserver] = None,
    ):
        self.adapters = adapters if adapters is not None else default_adapters()
        self.cache = cache if cache is not None else TTLCache()
        self.timeout_seconds = timeout_seconds or settings.source_timeout_seconds
        self.max_per_source = max_per_source or settings.max_per_source
        self.max_results = max_results or settings.max_aggregate_results
        self.observer = observer

    def _observe(self, source: str, outcome: str, seconds: float) -> None:
        if self.observer is not None:
            self.observer(source, outcome, seconds)

    async def _fetch_source(
        self,
        adapter: SourceAdapter,
        query: str,
        max_per_source: int,
        timeout: float,
        use_cache: bool,
    ) -> List[KnowledgeItem]:
        key = make_cache_key(adapter.name, query)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                self._observe(adapter.name, "cache_hit", 0.0)
                return cached[:max_per_source]

        start = time.perf_counter()
        try:
            items = await asyncio.wait_for(
                asyncio.to_thread(adapter.fetch, query, max_per_source),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            elapsed = time.perf_counter() - start
            self._observe(adapter.name, "timeout", elapsed)
            raise SourceTimeoutError(f"{adapter.name} timed out after {timeout:.1f}s") from None
        except Exception:
            self._observe(adapter.name, "error", time.perf_counter() - start)
            raise

        items = list(items or [])
        self._observe(adapter.name, "ok", time.perf_counter() - start)
        if use_cache:
            self.cache.set(key, items)
        return items[:max_per_source]

    @timed(name="aggregator.collect")
    async def collect(
        self,
        query: str,
        max_per_source: int = None,
        timeout_seconds: float = None,
        use_cache: bool = True,
    ) -> List[KnowledgeItem]:
        """Query every source concurrently and merge the results without ranking."""
        clean = normalize_query(query)
        if not clean:
            return []
        max_per_source = max_per_source or self.max_per_source
        timeout = timeout_seconds or self.timeout_seconds

        outcomes = await asyncio.gather(
            *(
                self._fetch_source(adapter, clean, max_per_source, timeout, use_cache)
                for adapter in self.adapters
            ),
            return_exceptions=True,
        )

        batches = []
        for adapter, outcome in zip(self.adapters, outcomes):
            if isinstance(outcome, SourceTimeoutError):
                log.debug(str(outcome))
                continue
            if isinstance(outcome, BaseException):
                log.warning(f"Source {adapter.name} failed: {type(outcome).__name__}: {outcome}")
                continue
            batches.append(outcome)

        merged = merge_items(batches)
        log.info(f"Collected {len(merged)} unique items from {len(batches)}/{len(self.adapters)} sources")
        return merged

    async def aggregate(
        self,
        query: str,
        max_per_source: int = None,
        timeout_seconds: float = None,
    ) -> List[KnowledgeItem]:
        """Ranked, truncated knowledge items for a free-text query. Never raises for source failures."""
        items = await self.collect(query, max_per_source=max_per_source, timeout_seconds=timeout_seconds)
        return rank_items(items)[: self.max_results]


# Singleton instance
_aggregator = None


def get_aggregator() -> SourceAggregator:
    """Get or create the process-wide aggregator (and its cache)."""
    global _aggregator
    if _aggregator is None:
        _aggregator = SourceAggregator(adapters=default_adapters(), cache=TTLCache())
    return _aggregator
