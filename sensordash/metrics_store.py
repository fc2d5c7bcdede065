"""In-memory time-series store for sensor metrics.

Each known metric key owns a :class:`MetricSeries`: a bounded buffer of raw
samples, one :class:`Bucketer` per aggregated resolution and the last value
written. Aggregation is incremental: every write folds into the currently
open bucket and a bucket is finalized only when a write lands in a different
one, so history is never re-scanned.

The store is volatile and holds one coarse lock; request handlers reach it
through ``current_app.extensions["metric_store"]``.
"""
import enum
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from .ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

DEFAULT_METRIC_KEYS = (
    "voltage",
    "current_A",
    "frequency_Hz",
    "energy_kWh",
    "temp.CH1",
    "temp.CH2",
    "temp.CH3",
    "temp.CH5",
    "vibration",
)


class Resolution(enum.Enum):
    RAW = "raw"
    ONE_MINUTE = "1min"
    FIVE_MINUTES = "5min"

    @classmethod
    def parse(cls, value: Union[str, "Resolution"]) -> "Resolution":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Invalid resolution {value!r}; use raw, 1min, or 5min"
            ) from None


# Bucket width of each aggregated resolution, as a multiple of the base width
RESOLUTION_FACTORS = {
    Resolution.ONE_MINUTE: 1,
    Resolution.FIVE_MINUTES: 5,
}


@dataclass(frozen=True)
class Sample:
    timestamp: int
    value: float


@dataclass(frozen=True)
class Aggregate:
    bucket_start: int
    avg: float
    min: float
    max: float
    count: int


class NoOpenBucket:
    """Bucketer state before the first write and after a reset."""

    def __repr__(self) -> str:
        return "NO_OPEN_BUCKET"


NO_OPEN_BUCKET = NoOpenBucket()


@dataclass
class OpenBucket:
    bucket_start: int
    total: float
    count: int
    minimum: float
    maximum: float

    @classmethod
    def start(cls, bucket_start: int, value: float) -> "OpenBucket":
        return cls(bucket_start, value, 1, value, value)

    def add(self, value: float) -> None:
        self.total += value
        self.count += 1
        self.minimum = min(self.minimum, value)
        self.maximum = max(self.maximum, value)

    def finalize(self) -> Aggregate:
        return Aggregate(
            bucket_start=self.bucket_start,
            avg=self.total / self.count,
            min=self.minimum,
            max=self.maximum,
            count=self.count,
        )


BucketState = Union[NoOpenBucket, OpenBucket]


class Bucketer:
    """Streams values into fixed-width time buckets.

    Only finalized buckets are visible through :meth:`aggregates`; the open
    bucket is exposed as :attr:`state`. A write whose bucket differs from the
    open one, earlier or later, closes the open bucket. Late arrivals
    therefore split a bucket instead of being merged back into it.
    """

    def __init__(self, width_ms: int, capacity: int):
        width_ms = int(width_ms)
        if width_ms < 1:
            raise ValueError(f"Bucket width must be >= 1 ms, got {width_ms}")
        self.width_ms = width_ms
        self._aggregated = RingBuffer(capacity)
        self.state: BucketState = NO_OPEN_BUCKET

    def bucket_start(self, timestamp: int) -> int:
        return timestamp // self.width_ms * self.width_ms

    def fold(self, value: float, timestamp: int) -> Optional[Aggregate]:
        """Fold one value in; return the aggregate finalized by this write, if any."""
        start = self.bucket_start(timestamp)
        state = self.state
        if isinstance(state, OpenBucket) and state.bucket_start == start:
            state.add(value)
            return None

        finalized = None
        if isinstance(state, OpenBucket):
            if start < state.bucket_start:
                logger.debug(
                    f"Late write for bucket {start} closes open bucket {state.bucket_start} "
                    f"(width {self.width_ms} ms)"
                )
            finalized = state.finalize()
            self._aggregated.push(finalized)
        self.state = OpenBucket.start(start, value)
        return finalized

    def aggregates(self) -> List[Aggregate]:
        return self._aggregated.snapshot()

    def clear(self) -> None:
        self._aggregated.clear()
        self.state = NO_OPEN_BUCKET

    def __len__(self) -> int:
        return len(self._aggregated)


class MetricSeries:
    def __init__(self, raw_capacity: int, aggregated_capacity: int, bucket_width_ms: int):
        self.raw = RingBuffer(raw_capacity)
        self.bucketers: Dict[Resolution, Bucketer] = {
            resolution: Bucketer(bucket_width_ms * factor, aggregated_capacity)
            for resolution, factor in RESOLUTION_FACTORS.items()
        }
        self.latest_value: Optional[float] = None

    def write(self, value: float, timestamp: int) -> None:
        self.raw.push(Sample(timestamp, value))
        self.latest_value = value
        for bucketer in self.bucketers.values():
            bucketer.fold(value, timestamp)

    def clear(self) -> None:
        self.raw.clear()
        for bucketer in self.bucketers.values():
            bucketer.clear()
        self.latest_value = None


def _in_range(ts: int, from_ts: Optional[int], to_ts: Optional[int]) -> bool:
    if from_ts is None or to_ts is None:
        return True
    return from_ts <= ts <= to_ts


class MetricStore:
    """Process-wide store keyed by flat metric names.

    Writes to keys that were not registered at construction are dropped and
    queries for them return nothing; callers map payload fields to keys.
    """

    def __init__(
        self,
        keys: Iterable[str] = DEFAULT_METRIC_KEYS,
        raw_capacity: int = 720,
        aggregated_capacity: int = 1000,
        bucket_width_ms: int = 60_000,
    ):
        self.raw_capacity = int(raw_capacity)
        self.aggregated_capacity = int(aggregated_capacity)
        self.bucket_width_ms = int(bucket_width_ms)
        self._lock = threading.Lock()
        self._series: Dict[str, MetricSeries] = {
            key: MetricSeries(self.raw_capacity, self.aggregated_capacity, self.bucket_width_ms)
            for key in keys
        }

    @property
    def keys(self) -> List[str]:
        return list(self._series)

    def series(self, key: str) -> Optional[MetricSeries]:
        return self._series.get(key)

    def write(self, key: str, value: float, timestamp: int) -> bool:
        series = self._series.get(key)
        if series is None:
            logger.debug(f"Dropping write for unknown metric {key!r}")
            return False
        with self._lock:
            series.write(float(value), int(timestamp))
        return True

    def query(
        self,
        key: str,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
        resolution: Union[str, Resolution] = Resolution.RAW,
    ) -> List[Dict[str, float]]:
        """Return ``{"ts", "value"}`` points for ``key`` in insertion order.

        The inclusive ``[from_ts, to_ts]`` filter applies only when both
        bounds are given. Aggregated resolutions return finalized buckets
        keyed by bucket start with the bucket average as value.
        """
        resolution = Resolution.parse(resolution)
        series = self._series.get(key)
        if series is None:
            return []

        with self._lock:
            if resolution is Resolution.RAW:
                items = series.raw.snapshot()
            else:
                items = series.bucketers[resolution].aggregates()

        if resolution is Resolution.RAW:
            return [
                {"ts": s.timestamp, "value": s.value}
                for s in items
                if _in_range(s.timestamp, from_ts, to_ts)
            ]
        return [
            {"ts": a.bucket_start, "value": a.avg}
            for a in items
            if _in_range(a.bucket_start, from_ts, to_ts)
        ]

    def latest_snapshot(self) -> Dict[str, Optional[float]]:
        with self._lock:
            return {key: series.latest_value for key, series in self._series.items()}

    def average_over(self, key: str, from_ts: int, to_ts: int) -> float:
        """Mean of raw values in ``[from_ts, to_ts]``; 0 when nothing matches."""
        points = self.query(key, from_ts, to_ts, Resolution.RAW)
        if not points:
            return 0
        return sum(p["value"] for p in points) / len(points)

    def reset(self) -> None:
        with self._lock:
            for series in self._series.values():
                series.clear()
        logger.info(f"Cleared {len(self._series)} metric series")

    def describe(self) -> Dict[str, Dict[str, int]]:
        """Retained item counts per key, used by the Prometheus endpoint."""
        with self._lock:
            result = {}
            for key, series in self._series.items():
                counts = {Resolution.RAW.value: len(series.raw)}
                for resolution, bucketer in series.bucketers.items():
                    counts[resolution.value] = len(bucketer)
                result[key] = counts
            return result
