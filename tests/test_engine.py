"""Tests for the orchestration engine."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeReplyClient, FakeSurface

from marketplace_chat_agent.engine import (CANCELLED, COLLECTED, DELIVERED, FAILED, SKIPPED,
                                           OrchestrationEngine, auto_responder_loop)
from marketplace_chat_agent.models import ReplyItem


class RecordingSink:
    def __init__(self, on_step=None) -> None:
        self.steps: list[str] = []
        self.on_step = on_step

    def report(self, step, detail=None, countdown=None) -> None:
        self.steps.append(step)
        if self.on_step:
            self.on_step(step)


class SlowSurface(FakeSurface):
    """Opening a chat takes a while, like a real page load."""

    def __init__(self, chats, delay: float) -> None:
        super().__init__(chats)
        self.delay = delay

    async def open_conversation(self, chat_id: str) -> bool:
        self.opened.append(chat_id)
        await asyncio.sleep(self.delay)
        self.current = chat_id
        return True


def _engine(surface, settings, client=None, sink=None) -> OrchestrationEngine:
    return OrchestrationEngine(surface, settings, sink=sink, reply_client=client or FakeReplyClient())


class TestBulkScan:
    @pytest.mark.asyncio
    async def test_requested_count_limits_opened_chats(self, fast_settings, three_chats) -> None:
        """Only the first N discovered chats are opened, in discovery order."""
        surface = FakeSurface(three_chats)
        client = FakeReplyClient()
        engine = _engine(surface, fast_settings, client)

        result = await engine.run_scan(2)

        assert result.started is True
        assert surface.opened == ["c1", "c2"]
        assert result.delivered == ["c1", "c2"]
        assert surface.simulator.submits == 2
        assert [ctx.chat_id for ctx in client.contexts] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_discovery_buffer_is_larger_than_request(self, fast_settings, three_chats) -> None:
        """Discovery scans a buffer of candidates before truncating."""
        surface = FakeSurface(three_chats)
        await _engine(surface, fast_settings).run_scan(2)
        assert surface.scan_requests == [30]

    @pytest.mark.asyncio
    async def test_context_splits_title(self, fast_settings, three_chats) -> None:
        """clientName/listing come from the conversation title."""
        client = FakeReplyClient()
        await _engine(FakeSurface(three_chats), fast_settings, client).run_scan(1)

        ctx = client.contexts[0]
        assert ctx.client_name == "Juan"
        assert ctx.listing == "Bicicleta"
        assert ctx.chat_name == "Juan · Bicicleta"
        assert ctx.to_payload()["messages"] == [{"text": "¿Sigue disponible?", "sender": "buyer"}]

    @pytest.mark.asyncio
    async def test_run_state_idle_after_completion(self, fast_settings, three_chats) -> None:
        engine = _engine(FakeSurface(three_chats), fast_settings)
        result = await engine.run_scan()
        assert result.cancelled is False
        assert engine.state.is_cycling is False
        assert engine.state.abort_token is None
        assert engine.replies_sent == 3

    @pytest.mark.asyncio
    async def test_failed_chat_does_not_abort_run(self, fast_settings, three_chats) -> None:
        """An exception in one chat is logged and the next chat is processed."""
        surface = FakeSurface(three_chats)
        engine = _engine(surface, fast_settings, FakeReplyClient(raise_for={"c1"}))

        result = await engine.run_scan(3)

        assert surface.opened == ["c1", "c2", "c3"]
        assert result.outcomes == {"c1": FAILED, "c2": DELIVERED, "c3": DELIVERED}

    @pytest.mark.asyncio
    async def test_empty_extraction_skips_reply_request(self, fast_settings, three_chats) -> None:
        surface = FakeSurface(three_chats, messages={"c1": []})
        client = FakeReplyClient()
        result = await _engine(surface, fast_settings, client).run_scan(2)

        assert result.outcomes["c1"] == SKIPPED
        assert [ctx.chat_id for ctx in client.contexts] == ["c2"]

    @pytest.mark.asyncio
    async def test_empty_reply_list_delivers_nothing(self, fast_settings, three_chats) -> None:
        surface = FakeSurface(three_chats)
        result = await _engine(surface, fast_settings, FakeReplyClient(replies=[])).run_scan(1)
        assert result.outcomes["c1"] == SKIPPED
        assert surface.simulator.submits == 0

    @pytest.mark.asyncio
    async def test_multiple_items_delivered_in_order(self, fast_settings, three_chats) -> None:
        surface = FakeSurface(three_chats)
        client = FakeReplyClient(replies=[ReplyItem.text("uno"), ReplyItem.text("dos")])
        await _engine(surface, fast_settings, client).run_scan(1)
        assert surface.simulator.inserted == ["uno", "dos"]
        assert surface.simulator.submits == 2

    @pytest.mark.asyncio
    async def test_wrong_conversation_is_not_answered(self, fast_settings, three_chats) -> None:
        """A chat whose URL shows a different id after navigation is skipped."""
        surface = FakeSurface(three_chats, redirect={"c1": "c9"})
        client = FakeReplyClient()
        result = await _engine(surface, fast_settings, client).run_scan(2)

        assert result.outcomes["c1"] == SKIPPED
        assert [ctx.chat_id for ctx in client.contexts] == ["c2"]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_during_preview(self, fast_settings, three_chats) -> None:
        """Cancelling in the preview window prevents delivery and later chats."""
        fast_settings.preview_seconds = 5.0
        surface = FakeSurface(three_chats)
        engine = _engine(surface, fast_settings)
        engine.sink = RecordingSink(on_step=lambda step: engine.cancel() if step == "Vorschau" else None)

        result = await asyncio.wait_for(engine.run_scan(3), timeout=2)

        assert result.cancelled is True
        assert result.outcomes == {"c1": CANCELLED}
        assert surface.opened == ["c1"]
        assert surface.simulator.submits == 0
        # composer cleared on the way out
        assert ("clear", None) in surface.simulator.calls
        assert engine.state.is_cycling is False
        assert engine.state.busy is False

    @pytest.mark.asyncio
    async def test_cancel_aborts_inflight_request(self, fast_settings, three_chats) -> None:
        """Cancellation sets the abort token of the running reply request."""
        surface = FakeSurface(three_chats)
        seen_tokens = []

        async def slow_client(context, url, abort=None, timeout=60.0):
            seen_tokens.append(abort)
            await abort.wait()
            return []

        engine = OrchestrationEngine(surface, fast_settings, reply_client=slow_client)
        task = asyncio.create_task(engine.run_scan(3))
        while not seen_tokens:
            await asyncio.sleep(0.01)
        engine.cancel()
        result = await asyncio.wait_for(task, timeout=2)

        assert seen_tokens[0].is_set()
        assert result.cancelled is True
        assert surface.opened == ["c1"]
        assert engine.state.abort_token is None

    @pytest.mark.asyncio
    async def test_restart_during_wind_down_is_rejected(self, fast_settings, three_chats) -> None:
        """A cancelled run keeps the guard until it has actually stopped."""
        surface = SlowSurface(three_chats, delay=0.2)
        client = FakeReplyClient()
        engine = _engine(surface, fast_settings, client)

        first = asyncio.create_task(engine.run_scan(3))
        while not surface.opened:
            await asyncio.sleep(0.01)
        engine.cancel()

        assert engine.state.busy is True
        second = await engine.run_scan(3)
        assert second.started is False

        result = await asyncio.wait_for(first, timeout=2)
        assert result.cancelled is True
        assert surface.opened == ["c1"]
        assert client.contexts == []
        assert surface.simulator.submits == 0
        assert engine.state.busy is False

        again = await engine.run_scan(1)
        assert again.started is True
        assert again.delivered == ["c1"]


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_second_start_is_rejected_without_side_effects(self, fast_settings, three_chats) -> None:
        surface = FakeSurface(three_chats)

        async def blocking_client(context, url, abort=None, timeout=60.0):
            await abort.wait()
            return []

        engine = OrchestrationEngine(surface, fast_settings, reply_client=blocking_client)
        first = asyncio.create_task(engine.run_scan(3))
        while not surface.opened:
            await asyncio.sleep(0.01)

        assert engine.state.is_cycling is True
        second = await engine.run_scan(3)
        single = await engine.process_single_unread()
        unread = await engine.process_unread()

        assert second.started is False
        assert single.started is False
        assert unread.started is False
        assert surface.opened == ["c1"]
        assert surface.scan_requests == [30]

        engine.cancel()
        await asyncio.wait_for(first, timeout=2)
        assert engine.state.busy is False

    @pytest.mark.asyncio
    async def test_engine_can_run_again_after_finish(self, fast_settings, three_chats) -> None:
        surface = FakeSurface(three_chats)
        engine = _engine(surface, fast_settings)
        await engine.run_scan(1)
        again = await engine.run_scan(1)
        assert again.started is True
        assert surface.opened == ["c1", "c1"]


class TestUnreadModes:
    @pytest.mark.asyncio
    async def test_process_unread_oldest_first(self, fast_settings, three_chats) -> None:
        """Only unread chats are processed, bottom of the list first."""
        surface = FakeSurface(three_chats)
        result = await _engine(surface, fast_settings).process_unread()
        assert surface.opened == ["c3", "c1"]
        assert result.delivered == ["c3", "c1"]

    @pytest.mark.asyncio
    async def test_single_unread_claims_exactly_one(self, fast_settings, three_chats) -> None:
        surface = FakeSurface(three_chats)
        engine = _engine(surface, fast_settings)
        result = await engine.process_single_unread()
        assert surface.opened == ["c3"]
        assert result.outcomes == {"c3": DELIVERED}
        assert engine.state.is_processing_single_unread is False

    @pytest.mark.asyncio
    async def test_single_unread_without_unread_chats(self, fast_settings, three_chats) -> None:
        chats = [c for c in three_chats if not c.unread]
        surface = FakeSurface(chats)
        result = await _engine(surface, fast_settings).process_single_unread()
        assert result.reason == "no-unread"
        assert surface.opened == []

    @pytest.mark.asyncio
    async def test_single_unread_is_not_reentrant(self, fast_settings, three_chats) -> None:
        surface = FakeSurface(three_chats)

        async def blocking_client(context, url, abort=None, timeout=60.0):
            await abort.wait()
            return []

        engine = OrchestrationEngine(surface, fast_settings, reply_client=blocking_client)
        first = asyncio.create_task(engine.process_single_unread())
        while not surface.opened:
            await asyncio.sleep(0.01)

        assert engine.state.is_processing_single_unread is True
        again = await engine.process_single_unread()
        bulk = await engine.run_scan(1)
        assert again.started is False
        assert bulk.started is False

        engine.cancel()
        await asyncio.wait_for(first, timeout=2)
        assert engine.state.is_processing_single_unread is False

    @pytest.mark.asyncio
    async def test_auto_responder_processes_unread(self, fast_settings, three_chats) -> None:
        fast_settings.auto_poll_seconds = 0.01
        surface = FakeSurface(three_chats)
        engine = _engine(surface, fast_settings)
        engine.auto_mode = True

        task = asyncio.create_task(auto_responder_loop(engine))
        while not surface.opened:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert surface.opened[0] == "c3"


class TestCollect:
    @pytest.mark.asyncio
    async def test_collect_reads_without_sending(self, fast_settings, three_chats) -> None:
        surface = FakeSurface(three_chats)
        client = FakeReplyClient()
        result = await _engine(surface, fast_settings, client).collect(2)

        assert [ctx.chat_id for ctx in result.contexts] == ["c1", "c2"]
        assert result.outcomes == {"c1": COLLECTED, "c2": COLLECTED}
        assert client.contexts == []
        assert surface.simulator.submits == 0
