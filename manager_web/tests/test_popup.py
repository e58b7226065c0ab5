"""Tests for popup redirect capture: the authorization channel and the pending-popup registry."""
import asyncio
import time

from manager_web.popup import (
    MESSAGE_ERROR,
    MESSAGE_SUCCESS,
    AuthorizationChannel,
    AuthorizationResult,
    PendingPopup,
    PopupRegistry,
)

ORIGIN = "http://127.0.0.1:8000"


def test_success_message_resolves_and_closes_window(window_factory):
    async def scenario():
        window = window_factory()
        channel = AuthorizationChannel(ORIGIN, poll_interval=0.01)
        waiter = asyncio.create_task(channel.wait(window))
        await asyncio.sleep(0)
        assert channel.post_message(ORIGIN, {"type": MESSAGE_SUCCESS, "code": "4/abc"}) is True
        return await waiter, window, channel

    result, window, channel = asyncio.run(scenario())
    assert result == AuthorizationResult(code="4/abc")
    assert window.close_calls == 1
    assert channel.settled


def test_error_message_resolves_with_error(window_factory):
    async def scenario():
        channel = AuthorizationChannel(ORIGIN, poll_interval=0.01)
        waiter = asyncio.create_task(channel.wait(window_factory()))
        await asyncio.sleep(0)
        channel.post_message(ORIGIN, {"type": MESSAGE_ERROR, "error": "access_denied"})
        return await waiter

    assert asyncio.run(scenario()) == AuthorizationResult(error="access_denied")


def test_closed_window_is_cancellation(window_factory):
    async def scenario():
        window = window_factory()
        channel = AuthorizationChannel(ORIGIN, poll_interval=0.01)
        waiter = asyncio.create_task(channel.wait(window))
        await asyncio.sleep(0.02)
        window.closed = True
        result = await waiter
        # Listener removed: a late message is no longer accepted
        late = channel.post_message(ORIGIN, {"type": MESSAGE_SUCCESS, "code": "late"})
        return result, late

    result, late = asyncio.run(scenario())
    assert result.cancelled is True
    assert late is False


def test_foreign_origin_ignored(window_factory):
    async def scenario():
        window = window_factory()
        channel = AuthorizationChannel(ORIGIN, poll_interval=0.01)
        waiter = asyncio.create_task(channel.wait(window))
        await asyncio.sleep(0)
        accepted = channel.post_message("https://evil.example", {"type": MESSAGE_SUCCESS, "code": "x"})
        await asyncio.sleep(0.03)
        window.closed = True
        return accepted, await waiter

    accepted, result = asyncio.run(scenario())
    assert accepted is False
    assert result.cancelled is True


def test_unknown_message_type_ignored():
    async def scenario():
        channel = AuthorizationChannel(ORIGIN)
        return (
            channel.post_message(ORIGIN, {"type": "SOMETHING_ELSE"}),
            channel.post_message(ORIGIN, {"type": MESSAGE_SUCCESS}),
        )

    assert asyncio.run(scenario()) == (False, False)


def test_only_first_message_settles():
    async def scenario():
        channel = AuthorizationChannel(ORIGIN)
        first = channel.post_message(ORIGIN, {"type": MESSAGE_SUCCESS, "code": "a"})
        second = channel.post_message(ORIGIN, {"type": MESSAGE_ERROR, "error": "b"})
        return first, second

    assert asyncio.run(scenario()) == (True, False)


def test_pending_popup_closes_after_ttl():
    popup = PendingPopup("st", "https://auth.example", ttl_seconds=0.01)
    assert popup.closed is False
    time.sleep(0.02)
    assert popup.closed is True


def test_registry_delivers_by_state():
    async def scenario():
        registry = PopupRegistry()
        channel = AuthorizationChannel(ORIGIN)
        registry.open("https://auth.example", "st-1", channel)
        unknown = registry.deliver("other", ORIGIN, {"type": MESSAGE_SUCCESS, "code": "c"})
        delivered = registry.deliver("st-1", ORIGIN, {"type": MESSAGE_SUCCESS, "code": "c"})
        return unknown, delivered, len(registry)

    assert asyncio.run(scenario()) == (False, True, 0)


def test_registry_keeps_entry_when_message_ignored():
    async def scenario():
        registry = PopupRegistry()
        registry.open("https://auth.example", "st-1", AuthorizationChannel(ORIGIN))
        ignored = registry.deliver("st-1", "https://evil.example", {"type": MESSAGE_SUCCESS, "code": "c"})
        delivered = registry.deliver("st-1", ORIGIN, {"type": MESSAGE_SUCCESS, "code": "c"})
        return ignored, delivered

    assert asyncio.run(scenario()) == (False, True)


def test_registry_mark_closed():
    registry = PopupRegistry()
    popup = registry.open("https://auth.example", "st-1", AuthorizationChannel(ORIGIN))
    assert registry.mark_closed("st-1") is True
    assert popup.closed is True
    assert registry.mark_closed("st-1") is False
    assert registry.deliver("st-1", ORIGIN, {"type": MESSAGE_SUCCESS, "code": "c"}) is False
