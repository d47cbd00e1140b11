import math
from collections import Counter
from dataclasses import dataclass
from typing import List, Sequence, Tuple


@dataclass(frozen=True)
class ConnectionShard:
    """Instruments served by one streaming connection, in universe order."""

    index: int
    symbols: Tuple[str, ...]
    batch_size: int

    def batches(self) -> List[Tuple[str, ...]]:
        return chunk(self.symbols, self.batch_size)

    def __len__(self) -> int:
        return len(self.symbols)


def chunk(items: Sequence[str], size: int) -> List[Tuple[str, ...]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [tuple(items[i:i + size]) for i in range(0, len(items), size)]


def plan_shards(universe: Sequence[str], max_connections: int, batch_size: int) -> List[ConnectionShard]:
    """Split ``universe`` into consecutive shards, one per connection.

    The number of connections is bounded both by ``max_connections`` and by
    how many subscribe batches the universe needs. Every shard holds at most
    ``ceil(len(universe) / shard_count)`` symbols; only the last one can be
    shorter.
    """
    if max_connections < 1:
        raise ValueError("max_connections must be at least 1")
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    symbols = list(universe)
    if len(set(symbols)) != len(symbols):
        duplicates = sorted(s for s, n in Counter(symbols).items() if n > 1)
        raise ValueError(f"universe contains duplicate instruments: {', '.join(duplicates)}")
    if not symbols:
        return []

    shard_count = min(max_connections, math.ceil(len(symbols) / batch_size))
    per_shard = math.ceil(len(symbols) / shard_count)
    return [
        ConnectionShard(index=i, symbols=group, batch_size=batch_size)
        for i, group in enumerate(chunk(symbols, per_shard))
    ]
