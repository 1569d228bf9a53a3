"""Data models for memstat."""

from dataclasses import dataclass, field

# Reset by the runtime at every collection
PER_COLLECTION_FIELDS: tuple[str, ...] = (
    "gc_allocd",
    "gc_deferred_alloc",
    "gc_freed",
    "gc_sweep_time",
    "gc_mark_time",
)

# Never reset by the runtime
CUMULATIVE_FIELDS: tuple[str, ...] = (
    "gc_malloc",
    "gc_realloc",
    "gc_poolalloc",
    "gc_bigalloc",
    "gc_freecall",
    "gc_total_allocd",
    "gc_total_sweep_time",
    "gc_total_sweep_page_walk_time",
    "gc_total_sweep_madvise_time",
    "gc_total_sweep_free_mallocd_memory_time",
    "gc_total_mark_time",
    "poolmem_bytes_allocated",
    "poolmem_live_bytes",
)

# Cumulative counters that must not decrease between two samples; live bytes
# on pool pages go down as objects are freed
MONOTONIC_FIELDS: tuple[str, ...] = tuple(
    name for name in CUMULATIVE_FIELDS if name != "poolmem_live_bytes"
)

GC_FIELDS: tuple[str, ...] = (
    "gc_allocd",
    "gc_deferred_alloc",
    "gc_freed",
    "gc_malloc",
    "gc_realloc",
    "gc_poolalloc",
    "gc_bigalloc",
    "gc_freecall",
    "gc_total_allocd",
    "gc_sweep_time",
    "gc_mark_time",
    "gc_total_sweep_time",
    "gc_total_sweep_page_walk_time",
    "gc_total_sweep_madvise_time",
    "gc_total_sweep_free_mallocd_memory_time",
    "gc_total_mark_time",
)

POOL_FIELDS: tuple[str, ...] = ("poolmem_bytes_allocated", "poolmem_live_bytes")

COUNTER_FIELDS: tuple[str, ...] = GC_FIELDS + POOL_FIELDS + (
    "bytes_wasted_due_to_pool_fragmentation",
    "program_rss_bytes",
)


def pool_fragmentation(allocated: int, live: int) -> int:
    """Bytes reserved on pool pages but not held by live objects, never negative."""
    return max(0, allocated - live)


def format_bytes(size: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{size:5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def _check_counters(record: object, names: tuple[str, ...]) -> None:
    for name in names:
        value = getattr(record, name)
        if value < 0:
            raise ValueError(f"{name} must be non-negative, got {value}")


@dataclass(slots=True, frozen=True)
class RuntimeCounters:
    """Counters supplied by the managed runtime in a single query."""

    gc_allocd: int = 0  # Bytes
    gc_deferred_alloc: int = 0  # Bytes
    gc_freed: int = 0  # Bytes
    gc_malloc: int = 0
    gc_realloc: int = 0
    gc_poolalloc: int = 0
    gc_bigalloc: int = 0
    gc_freecall: int = 0
    gc_total_allocd: int = 0  # Bytes
    gc_sweep_time: int = 0  # ns
    gc_mark_time: int = 0  # ns
    gc_total_sweep_time: int = 0  # ns
    gc_total_sweep_page_walk_time: int = 0  # ns
    gc_total_sweep_madvise_time: int = 0  # ns
    gc_total_sweep_free_mallocd_memory_time: int = 0  # ns
    gc_total_mark_time: int = 0  # ns
    poolmem_bytes_allocated: int = 0  # Bytes
    poolmem_live_bytes: int = 0  # Bytes
    unsupported: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        _check_counters(self, GC_FIELDS + POOL_FIELDS)


@dataclass(slots=True, frozen=True)
class MemoryMetrics:
    """
    Immutable snapshot of the process memory and GC counters.

    A new record is built for every sample and published as a whole, so a
    reader holding a reference always sees values from the same sample.
    Counters listed in ``unsupported`` could not be collected on this
    platform and read as zero.
    """

    gc_allocd: int = 0
    gc_deferred_alloc: int = 0
    gc_freed: int = 0
    gc_malloc: int = 0
    gc_realloc: int = 0
    gc_poolalloc: int = 0
    gc_bigalloc: int = 0
    gc_freecall: int = 0
    gc_total_allocd: int = 0
    gc_sweep_time: int = 0
    gc_mark_time: int = 0
    gc_total_sweep_time: int = 0
    gc_total_sweep_page_walk_time: int = 0
    gc_total_sweep_madvise_time: int = 0
    gc_total_sweep_free_mallocd_memory_time: int = 0
    gc_total_mark_time: int = 0
    poolmem_bytes_allocated: int = 0
    poolmem_live_bytes: int = 0
    bytes_wasted_due_to_pool_fragmentation: int = 0
    program_rss_bytes: int = 0
    sequence: int = 0  # Successful samples so far; 0 means never sampled
    unsupported: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        _check_counters(self, COUNTER_FIELDS + ("sequence",))

    @classmethod
    def from_counters(
        cls,
        counters: RuntimeCounters,
        program_rss_bytes: int,
        sequence: int,
        unsupported: frozenset[str] = frozenset(),
    ) -> "MemoryMetrics":
        """Build a snapshot from runtime counters and an RSS reading."""
        values = {name: getattr(counters, name) for name in GC_FIELDS + POOL_FIELDS}
        return cls(
            **values,
            bytes_wasted_due_to_pool_fragmentation=pool_fragmentation(
                counters.poolmem_bytes_allocated, counters.poolmem_live_bytes
            ),
            program_rss_bytes=program_rss_bytes,
            sequence=sequence,
            unsupported=counters.unsupported | unsupported,
        )

    def as_dict(self) -> dict[str, int]:
        """Return the counters as a plain dict."""
        return {name: getattr(self, name) for name in COUNTER_FIELDS}

    def format(self) -> str:
        """Render every counter as a ``name=value`` listing for logs."""
        parts = []
        for name in COUNTER_FIELDS:
            value = getattr(self, name)
            if name in self.unsupported:
                parts.append(f"{name}={value} (unsupported)")
            else:
                parts.append(f"{name}={value}")
        return f"MemoryMetrics(sequence={self.sequence}, " + ", ".join(parts) + ")"

    def __str__(self) -> str:
        return self.format()

