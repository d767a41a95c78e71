"""Tests for chatrelay.streaming.session: session lifecycle and registry."""

from __future__ import annotations

import pytest

from chatrelay.errors import InvalidTransitionError, SessionActiveError
from chatrelay.schemas.streaming import FrameKind, SessionState
from chatrelay.streaming.session import TERMINAL_FRAMES, SessionRegistry, StreamingSession


def _make_session(*deltas: str) -> StreamingSession:
    session = StreamingSession(conversation_id=7)
    for delta in deltas:
        session.append(delta)
    return session


class TestStreamingSession:
    def test_starts_active_and_empty(self):
        session = _make_session()
        assert session.state is SessionState.ACTIVE
        assert session.is_active
        assert session.text == ""

    def test_accumulates_in_order(self):
        session = _make_session("Hi", " there", "!")
        assert session.text == "Hi there!"

    def test_complete_emits_done_and_clears_buffer(self):
        session = _make_session("Hi")
        frame = session.complete()
        assert frame.kind is FrameKind.DONE
        assert session.state is SessionState.COMPLETED
        assert session.text == ""

    def test_fail_emits_error_frame(self):
        session = _make_session("Hi")
        frame = session.fail("upstream down")
        assert frame.kind is FrameKind.ERROR
        assert frame.error == "upstream down"
        assert session.state is SessionState.FAILED
        assert session.error == "upstream down"
        assert session.text == ""

    def test_abort_clears_buffer(self):
        session = _make_session("Hi")
        session.abort()
        assert session.state is SessionState.ABORTED
        assert session.text == ""

    @pytest.mark.parametrize("end", ["complete", "abort"])
    def test_terminal_states_are_final(self, end):
        session = _make_session()
        getattr(session, end)()
        with pytest.raises(InvalidTransitionError):
            session.complete()
        with pytest.raises(InvalidTransitionError):
            session.fail("late")
        with pytest.raises(InvalidTransitionError):
            session.append("late")

    def test_abort_if_active(self):
        session = _make_session()
        assert session.abort_if_active() is True
        assert session.abort_if_active() is False
        assert session.state is SessionState.ABORTED

    def test_terminal_frame_table(self):
        assert TERMINAL_FRAMES == {
            SessionState.COMPLETED: FrameKind.DONE,
            SessionState.FAILED: FrameKind.ERROR,
            SessionState.ABORTED: None,
        }
        assert all(state.is_terminal for state in TERMINAL_FRAMES)
        assert not SessionState.ACTIVE.is_terminal


class TestSessionRegistry:
    def test_open_claims_conversation(self):
        registry = SessionRegistry()
        session = registry.open(1)
        assert registry.is_active(1)
        assert registry.get(1) is session
        assert len(registry) == 1

    def test_second_open_rejected(self):
        registry = SessionRegistry()
        registry.open(1)
        with pytest.raises(SessionActiveError) as exc_info:
            registry.open(1)
        assert exc_info.value.conversation_id == 1

    def test_other_conversations_independent(self):
        registry = SessionRegistry()
        registry.open(1)
        registry.open(2)
        assert len(registry) == 2

    def test_release_frees_slot(self):
        registry = SessionRegistry()
        session = registry.open(1)
        session.complete()
        registry.release(session)
        assert not registry.is_active(1)
        assert registry.open(1) is not session

    def test_release_of_stale_session_is_noop(self):
        registry = SessionRegistry()
        old = registry.open(1)
        registry.release(old)
        current = registry.open(1)
        registry.release(old)
        assert registry.get(1) is current
