from __future__ import annotations

import asyncio

import pytest

from fakes import FakeBrowser, FakePage, fake_scripts, fast_settings, hang, make_session, transport_error
from webchat_driver.automation.browser import ConnectionManager
from webchat_driver.automation.errors import TransportError


def _manager(browser_factory, **settings) -> ConnectionManager:
    manager = ConnectionManager(fast_settings(**settings), fake_scripts())
    manager.attempts = []

    async def connect_browser(endpoint):
        manager.attempts.append(endpoint)
        return await browser_factory()

    manager._connect_browser = connect_browser
    return manager


def test_unreachable_endpoint_gives_up_after_bounded_attempts() -> None:
    async def never_answers():
        await asyncio.sleep(60)

    manager = _manager(never_answers, connect_attempts=3, connect_timeout=0.05, connect_retry_delay=0.01)

    async def scenario():
        loop = asyncio.get_event_loop()
        start = loop.time()
        session = await manager.connect("http://localhost:1")
        return session, loop.time() - start

    session, elapsed = asyncio.run(scenario())
    assert session is None
    assert len(manager.attempts) == 3
    assert manager.attempts[0] == "http://localhost:1"
    # three timeouts plus linear delays of 0.01 and 0.02
    assert 0.15 <= elapsed < 1.0
    assert manager.is_connected is False


def test_connect_failure_then_success_is_retried() -> None:
    page = FakePage.ready()
    outcomes = [ConnectionRefusedError("refused"), FakeBrowser([page])]

    async def factory():
        outcome = outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    manager = _manager(factory)
    session = asyncio.run(manager.connect())
    assert session is not None
    assert session.page is page
    assert len(manager.attempts) == 2


def test_connect_prefers_the_tab_already_on_the_target() -> None:
    other = FakePage.ready(url="https://example.com/")
    target = FakePage.ready()
    browser = FakeBrowser([other, target])

    async def factory():
        return browser

    manager = _manager(factory)
    session = asyncio.run(manager.connect())

    assert session.page is target
    assert target.gotos == []
    assert target.called("action:hide_automation") == 1


def test_connect_navigates_an_existing_tab_when_none_is_on_target() -> None:
    page = FakePage.ready(url="about:blank")

    async def factory():
        return FakeBrowser([page])

    manager = _manager(factory)
    session = asyncio.run(manager.connect())

    assert session.page is page
    assert page.gotos == [("https://gemini.google.com/app", "domcontentloaded")]


def test_navigation_falls_back_to_commit() -> None:
    page = FakePage.ready(url="about:blank")
    page.goto_errors.append(Exception("Timeout 30000ms exceeded"))

    async def factory():
        return FakeBrowser([page])

    manager = _manager(factory)
    asyncio.run(manager.connect())
    assert [wait for _, wait in page.gotos] == ["domcontentloaded", "commit"]


def test_connect_opens_a_page_when_the_browser_has_none() -> None:
    browser = FakeBrowser([])

    async def factory():
        return browser

    manager = _manager(factory)
    session = asyncio.run(manager.connect())
    assert session is not None
    assert browser.contexts[0].pages == [session.page]


def test_connecting_again_replaces_the_previous_session() -> None:
    browsers = [FakeBrowser([FakePage.ready()]), FakeBrowser([FakePage.ready()])]
    first_browser = browsers[0]

    async def factory():
        return browsers.pop(0)

    manager = _manager(factory)

    async def scenario():
        first = await manager.connect()
        second = await manager.connect()
        return first, second

    first, second = asyncio.run(scenario())
    assert first is not second
    assert first.connected is False
    assert first_browser.closed == 1
    assert manager.session is second


def test_attach_to_a_dead_browser_raises_transport_error() -> None:
    page = FakePage.ready()
    page.health = hang
    manager = ConnectionManager(fast_settings(), fake_scripts())

    with pytest.raises(TransportError):
        asyncio.run(manager.attach_to_existing(FakeBrowser([page])))
    assert manager.session is None


def test_attach_to_a_live_browser_returns_a_session() -> None:
    page = FakePage.ready()
    manager = ConnectionManager(fast_settings(), fake_scripts())
    session = asyncio.run(manager.attach_to_existing(FakeBrowser([page])))
    assert session.connected is True
    assert manager.is_connected is True


def test_health_check_detects_a_zombie_session() -> None:
    session, page, _ = make_session()
    assert asyncio.run(session.check_connection()) is True

    page.health = hang
    assert asyncio.run(session.check_connection()) is False
    assert session.connected is False


def test_ensure_connection_latches_and_notifies_once() -> None:
    notices = []
    page = FakePage.ready()
    manager = ConnectionManager(fast_settings(), fake_scripts(), on_disconnect=notices.append)

    async def scenario():
        await manager.attach_to_existing(FakeBrowser([page]))
        assert await manager.ensure_connection() is True

        page.health = transport_error()
        results = [await manager.ensure_connection() for _ in range(5)]
        return results

    results = asyncio.run(scenario())
    assert results == [False] * 5
    assert len(notices) == 1
    # only the first failing check reached the page
    assert page.called("() => 1") == 3


def test_browser_disconnect_event_invalidates_the_session() -> None:
    notices = []
    page = FakePage.ready()
    browser = FakeBrowser([page])
    manager = ConnectionManager(fast_settings(), fake_scripts(), on_disconnect=notices.append)

    async def scenario():
        session = await manager.attach_to_existing(browser)
        browser.emit("disconnected")
        with pytest.raises(TransportError):
            await session.evaluate("probe:input_ready")
        return session

    session = asyncio.run(scenario())
    assert session.connected is False
    assert len(notices) == 1
    assert asyncio.run(manager.ensure_connection()) is False


def test_transport_error_during_evaluate_marks_session_dead() -> None:
    session, page, _ = make_session()
    page.results["probe:input_ready"] = transport_error()

    with pytest.raises(TransportError):
        asyncio.run(session.evaluate("probe:input_ready"))
    assert session.connected is False


def test_script_errors_do_not_kill_the_session() -> None:
    from playwright.async_api import Error as PlaywrightError

    session, page, _ = make_session()
    page.results["probe:input_ready"] = PlaywrightError("ReferenceError: foo is not defined")

    with pytest.raises(PlaywrightError):
        asyncio.run(session.evaluate("probe:input_ready"))
    assert session.connected is True


def test_cookies_pass_through_to_the_context() -> None:
    session, page, _ = make_session()

    async def scenario():
        await session.set_cookies([{"name": "SID", "value": "x", "domain": ".google.com", "path": "/"}])
        return await session.cookies()

    cookies = asyncio.run(scenario())
    assert cookies[0]["name"] == "SID"


def test_failed_setup_after_adoption_leaves_no_session() -> None:
    pages = []

    async def factory():
        page = FakePage.ready()
        page.results["action:hide_automation"] = transport_error()
        pages.append(page)
        return FakeBrowser([page])

    manager = _manager(factory, connect_attempts=2)
    session = asyncio.run(manager.connect())

    assert session is None
    assert manager.session is None
    assert manager.is_connected is False
    assert len(pages) == 2
