"""Live/historical reading merger.

Device pages show readings from up to three places at once: the paddy's own
log collection, the device-level fallback log, and a short buffer of samples
pushed by the realtime subscription. The merger folds them into one
deduplicated sequence, newest first for tables and oldest first for charts.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Iterable, List, Optional, Tuple

from ..models import DeviceNPK, LogEntry, SourceTag
from ..models.records import CHART_POINTS
from ..utils.timestamps import normalize_timestamp, now_ms, to_epoch_ms
from .. import config

logger = logging.getLogger(__name__)


def _fmt(value: Optional[float]) -> str:
    if value is None:
        return ""
    # 10 and 10.0 must produce the same key
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _floor_seconds(entry: LogEntry) -> int:
    return (to_epoch_ms(entry.timestamp) or 0) // 1000


def reading_signature(entry: LogEntry) -> Tuple[int, str, str, str]:
    """Source-independent identity of a reading: second + nutrient values"""
    return (
        _floor_seconds(entry),
        _fmt(entry.nitrogen),
        _fmt(entry.phosphorus),
        _fmt(entry.potassium),
    )


def dedupe_key(entry: LogEntry) -> str:
    """Composite key used to decide that two readings are the same"""
    tag = entry.source_tag.value if entry.source_tag else "unknown"
    if entry.id:
        return f"{tag}:{entry.id}"
    seconds, n, p, k = reading_signature(entry)
    return f"{tag}:{seconds}:{n}:{p}:{k}"


@dataclass
class MergedReadings:
    """Result of a merge: table order, chart slice, and paging helpers"""
    descending: List[LogEntry] = field(default_factory=list)
    chart: List[LogEntry] = field(default_factory=list)

    def __len__(self):
        return len(self.descending)

    def total_pages(self, per_page: int = 10) -> int:
        return math.ceil(len(self.descending) / per_page) if per_page > 0 else 0

    def page(self, page: int = 1, per_page: int = 10) -> List[LogEntry]:
        """1-based page of the newest-first list"""
        if page < 1 or per_page < 1:
            return []
        start = (page - 1) * per_page
        return self.descending[start:start + per_page]

    def latest(self) -> Optional[LogEntry]:
        return self.descending[0] if self.descending else None


def dedupe_readings(entries: Iterable[LogEntry]) -> List[LogEntry]:
    """Drop repeated readings, keeping the first occurrence of each key.

    Entries backed by a document are considered before id-less ones, so a
    live sample that was persisted later collapses onto the stored copy no
    matter which source resolved first.
    """
    entries = list(entries)
    with_id = [e for e in entries if e.id]
    without_id = [e for e in entries if not e.id]

    kept: List[LogEntry] = []
    seen_keys = set()
    seen_signatures = set()

    for entry in with_id + without_id:
        key = dedupe_key(entry)
        if key in seen_keys:
            continue
        signature = reading_signature(entry)
        if not entry.id and signature in seen_signatures:
            continue
        seen_keys.add(key)
        seen_signatures.add(signature)
        kept.append(entry)

    return kept


def merge_readings(*sources: Iterable[LogEntry], chart_points: int = CHART_POINTS) -> MergedReadings:
    """Merge historical query results and the live buffer into one view"""
    combined: List[LogEntry] = []
    for source in sources:
        if source:
            combined.extend(source)

    deduped = dedupe_readings(combined)
    descending = sorted(deduped, key=lambda e: e.timestamp, reverse=True)
    chart = list(reversed(descending[:chart_points])) if chart_points > 0 else []

    return MergedReadings(descending=descending, chart=chart)


class LiveReadingBuffer:
    """Bounded buffer of samples pushed by the realtime subscription.

    Oldest entries are evicted first. A sample identical to the previous one
    means the device has not produced a new reading yet and is ignored.
    """

    def __init__(self, capacity: int = None):
        capacity = capacity or config.LIVE_BUFFER_SIZE
        self.buffer: Deque[LogEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self.buffer.maxlen

    def push(self, npk: Optional[DeviceNPK], now: Optional[int] = None) -> Optional[LogEntry]:
        """Add a sample; returns the stored entry or None when skipped"""
        if npk is None or not npk.has_values():
            return None

        last = self.buffer[-1] if self.buffer else None
        if last is not None and last.reading_signature() == npk.signature():
            return None

        timestamp = normalize_timestamp(npk.timestamp)
        if timestamp is None:
            # Relative counter or missing: stamp with arrival time
            timestamp = now_ms() if now is None else now

        entry = LogEntry(
            source_tag=SourceTag.LIVE,
            timestamp=timestamp,
            nitrogen=npk.n,
            phosphorus=npk.p,
            potassium=npk.k,
            deviceTimestamp=npk.timestamp,
        )
        self.buffer.append(entry)
        logger.debug(f"Live sample buffered ({len(self.buffer)}/{self.capacity})")
        return entry

    def entries(self) -> List[LogEntry]:
        return list(self.buffer)

    def clear(self):
        self.buffer.clear()

    def __len__(self):
        return len(self.buffer)
