import sys

sys.path.insert(0, '.')

import pytest

from ingest.subscription_planner import chunk, plan_shards


def _universe(n):
    return [f"SYM{i:04d}USDT" for i in range(n)]


@pytest.mark.parametrize('size', [1, 7, 10, 25, 99, 100, 101, 457])
@pytest.mark.parametrize('max_connections', [1, 3, 5, 8])
@pytest.mark.parametrize('batch_size', [1, 10, 50])
def test_shards_partition_universe_in_order(size, max_connections, batch_size):
    universe = _universe(size)
    shards = plan_shards(universe, max_connections, batch_size)

    assert 1 <= len(shards) <= max_connections
    assert [s for shard in shards for s in shard.symbols] == universe
    assert [shard.index for shard in shards] == list(range(len(shards)))

    target = len(shards[0])
    for shard in shards:
        assert 0 < len(shard) <= target
        assert all(len(batch) <= batch_size for batch in shard.batches())
        assert [s for batch in shard.batches() for s in batch] == list(shard.symbols)


def test_shard_count_bounded_by_batch_capacity():
    shards = plan_shards(_universe(25), max_connections=5, batch_size=10)
    assert len(shards) == 3
    assert [len(s) for s in shards] == [9, 9, 7]


def test_shard_count_bounded_by_max_connections():
    shards = plan_shards(_universe(500), max_connections=5, batch_size=10)
    assert [len(s) for s in shards] == [100] * 5
    assert len(shards[0].batches()) == 10


def test_last_shard_absorbs_remainder():
    shards = plan_shards(_universe(10), max_connections=4, batch_size=3)
    assert [len(s) for s in shards] == [3, 3, 3, 1]


def test_empty_universe_yields_no_shards():
    assert plan_shards([], max_connections=5, batch_size=10) == []


def test_duplicates_are_rejected():
    with pytest.raises(ValueError, match='BTCUSDT'):
        plan_shards(['BTCUSDT', 'ETHUSDT', 'BTCUSDT'], max_connections=2, batch_size=1)


@pytest.mark.parametrize('max_connections,batch_size', [(0, 10), (5, 0), (-1, -1)])
def test_invalid_limits_are_rejected(max_connections, batch_size):
    with pytest.raises(ValueError):
        plan_shards(_universe(5), max_connections, batch_size)


def test_chunk_keeps_order_and_size():
    assert chunk(['a', 'b', 'c', 'd', 'e'], 2) == [('a', 'b'), ('c', 'd'), ('e',)]
    assert chunk([], 3) == []
