import asyncio
import sys

sys.path.insert(0, '.')

from ingest.connection_pool import ConnectionPool
from ingest.websocket_client import ConnectionState
from tests.fakes import FakeConnector, FakeWebSocket, base_config, wait_until


UNIVERSE = [f"S{i}USDT" for i in range(9)]


async def _noop(payload, shard_index):
    return None


def _pool(connector, **ws_overrides):
    cfg = base_config(websocket={'max_connections': 3, 'batch_size': 2, **ws_overrides})
    ws_cfg = {**cfg['websocket'], 'url': cfg['exchange']['ws_url'], 'topic_prefix': 'tickers.'}
    return ConnectionPool(UNIVERSE, _noop, ws_cfg=ws_cfg, connect=connector)


def _subscribed(ws):
    return [topic[len('tickers.'):] for args in ws.subscriptions() for topic in args]


def test_pool_builds_one_supervisor_per_shard():
    pool = _pool(FakeConnector())
    assert [list(s.symbols) for s in pool.shards] == [UNIVERSE[0:3], UNIVERSE[3:6], UNIVERSE[6:9]]
    assert [sup.shard.index for sup in pool.supervisors] == [0, 1, 2]
    assert pool.connections == [None, None, None]


def test_start_is_staggered_and_subscribes_every_shard():
    connector = FakeConnector()
    pool = _pool(connector, stagger_delay_s=0.02)

    async def _run():
        loop = asyncio.get_running_loop()
        started = loop.time()
        await pool.start()
        elapsed = loop.time() - started
        assert all(sup.state is ConnectionState.STREAMING for sup in pool.supervisors)
        assert all(ws is not None for ws in pool.connections)
        await pool.shutdown()
        return elapsed

    elapsed = asyncio.run(_run())
    assert elapsed >= 0.035
    assert [_subscribed(ws) for ws in connector.sockets] == [UNIVERSE[0:3], UNIVERSE[3:6], UNIVERSE[6:9]]
    first_sends = [ws.sent_at[0] for ws in connector.sockets]
    assert all(b - a >= 0.015 for a, b in zip(first_sends, first_sends[1:]))


def test_failed_first_attempt_does_not_block_startup():
    connector = FakeConnector(lambda n: OSError('refused') if n == 1 else FakeWebSocket())
    pool = _pool(connector, reconnect_delay_s=30)

    async def _run():
        await pool.start()
        states = [sup.state for sup in pool.supervisors]
        await pool.shutdown()
        return states

    states = asyncio.run(_run())
    assert states[0] is ConnectionState.RECONNECTING
    assert states[1:] == [ConnectionState.STREAMING, ConnectionState.STREAMING]


def test_forced_closures_only_reconnect_affected_shard():
    connector = FakeConnector()
    pool = _pool(connector)
    closures = 3

    def _sockets_for(shard_index):
        expected = list(pool.shards[shard_index].symbols)
        return [ws for ws in connector.sockets if _subscribed(ws) == expected]

    async def _run():
        await pool.start()
        target = pool.supervisors[1]
        for i in range(closures):
            await wait_until(lambda: target.state is ConnectionState.STREAMING and len(_sockets_for(1)) == i + 1)
            target.ws.close_from_server()
        await wait_until(lambda: target.state is ConnectionState.STREAMING and len(_sockets_for(1)) == closures + 1)
        await pool.shutdown()

    asyncio.run(_run())
    assert [sup.reconnects for sup in pool.supervisors] == [0, closures, 0]
    assert len(_sockets_for(0)) == 1
    assert len(_sockets_for(2)) == 1


def test_shutdown_closes_connections_and_cancels_pending_reconnects():
    connector = FakeConnector()
    pool = _pool(connector, reconnect_delay_s=30)

    async def _run():
        await pool.start()
        victim = pool.supervisors[0]
        victim.ws.close_from_server()
        await wait_until(lambda: victim.state is ConnectionState.RECONNECTING)
        await pool.shutdown()
        await asyncio.sleep(0.01)

    asyncio.run(_run())
    assert len(connector.calls) == 3
    assert all(ws.closed for ws in connector.sockets)
    assert all(sup.state is ConnectionState.STOPPED for sup in pool.supervisors)
    assert pool.connections == [None, None, None]


def test_wait_returns_once_every_supervisor_exits():
    pool = _pool(FakeConnector())

    async def _run():
        await pool.start()
        for supervisor in pool.supervisors:
            await supervisor.close()
        await asyncio.wait_for(pool.wait(), timeout=1.0)
        await pool.shutdown()

    asyncio.run(_run())
    assert all(sup.state is ConnectionState.STOPPED for sup in pool.supervisors)
