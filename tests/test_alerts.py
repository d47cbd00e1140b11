import asyncio
import logging
import sys

sys.path.insert(0, '.')

import aiohttp

from api.alerts import TelegramNotifier
from tests.fakes import FakeResponse, FakeSession, base_config


def _notifier(responses, **overrides):
    cfg = {**base_config()['notifications'], 'api_url': 'https://tg.test', **overrides}
    session = FakeSession(responses)
    return TelegramNotifier(cfg, session_factory=lambda: session), session


def test_send_posts_html_message_to_chat():
    notifier, session = _notifier([FakeResponse(200, {'ok': True})])

    async def _run():
        ok = await notifier.send('<b>hi</b>')
        await notifier.close()
        return ok

    assert asyncio.run(_run()) is True
    request = session.requests[0]
    assert request['url'] == 'https://tg.test/bot123:abc/sendMessage'
    assert request['json']['chat_id'] == '42'
    assert request['json']['text'] == '<b>hi</b>'
    assert request['json']['parse_mode'] == 'HTML'
    assert session.closed


def test_notify_returns_before_delivery_completes():
    notifier, session = _notifier([FakeResponse(200, {'ok': True}, delay=0.05)])

    async def _run():
        task = notifier.notify('entry')
        assert task is not None
        assert not task.done()
        assert notifier.pending == 1
        result = await task
        return result

    assert asyncio.run(_run()) is True
    assert notifier.pending == 0


def test_delivery_failures_are_logged_not_raised(caplog):
    notifier, _ = _notifier([
        FakeResponse(400, {'ok': False, 'description': 'Bad Request: chat not found'}),
        aiohttp.ClientConnectionError('connection reset'),
        FakeResponse(200, {'ok': False, 'description': 'rejected'}),
    ])

    async def _run():
        results = [await notifier.send('a'), await notifier.send('b'), await notifier.send('c')]
        await notifier.close()
        return results

    with caplog.at_level(logging.ERROR, logger='api.alerts'):
        assert asyncio.run(_run()) == [False, False, False]
    assert 'chat not found' in caplog.text
    assert 'connection reset' in caplog.text


def test_request_timeout_is_contained():
    notifier, _ = _notifier([asyncio.TimeoutError()])

    async def _run():
        ok = await notifier.send('slow')
        await notifier.close()
        return ok

    assert asyncio.run(_run()) is False


def test_send_final_is_bounded():
    notifier, _ = _notifier([FakeResponse(200, {'ok': True}, delay=5.0)], shutdown_timeout_s=0.05)

    async def _run():
        loop = asyncio.get_running_loop()
        started = loop.time()
        ok = await notifier.send_final('stopped')
        await notifier.close(drain=False)
        return ok, loop.time() - started

    ok, elapsed = asyncio.run(_run())
    assert ok is False
    assert elapsed < 1.0


def test_backlog_beyond_max_pending_is_dropped():
    notifier, _ = _notifier([FakeResponse(200, {'ok': True}, delay=0.05)], max_pending=2)

    async def _run():
        tasks = [notifier.notify(str(i)) for i in range(3)]
        await notifier.close()
        return tasks

    tasks = asyncio.run(_run())
    assert tasks[0] is not None and tasks[1] is not None
    assert tasks[2] is None


def test_disabled_notifier_skips_delivery():
    notifier, session = _notifier([FakeResponse(200, {'ok': True})], telegram_bot_token=None)

    async def _run():
        return await notifier.send('hello')

    assert notifier.enabled is False
    assert asyncio.run(_run()) is False
    assert session.requests == []
