"""Unit tests for turn tracking."""

from realtime_console.transport.conversation import ConversationItem
from realtime_console.turns import TurnRole, TurnStatus, TurnTracker


def test_observe_creates_turn() -> None:
    """Test a new message item starts an in-progress turn."""
    tracker = TurnTracker()

    turn = tracker.observe(ConversationItem(id="a1", role="assistant"))

    assert turn is not None
    assert turn.role == TurnRole.ASSISTANT
    assert turn.status == TurnStatus.IN_PROGRESS
    assert tracker.in_progress(TurnRole.ASSISTANT) is turn


def test_non_message_items_ignored() -> None:
    """Test tool calls and system items produce no turns."""
    tracker = TurnTracker()

    assert tracker.observe(ConversationItem(id="f1", type="function_call")) is None
    assert tracker.observe(ConversationItem(id="s1", role="system")) is None
    assert tracker.turns == []


def test_audio_and_transcript_accumulate() -> None:
    """Test audio deltas count samples and the transcript follows the item."""
    tracker = TurnTracker()
    item = ConversationItem(id="a1", role="assistant")

    tracker.observe(item, {"audio": b"\x00" * 4800})
    item.formatted.transcript = "Hello there"
    turn = tracker.observe(item, {"transcript": " there"})

    assert turn is not None
    assert turn.samples_received == 2400
    assert turn.audio_track_id == "a1"
    assert turn.transcript == "Hello there"


def test_one_in_progress_turn_per_role() -> None:
    """Test a new turn completes the previous in-progress turn of that role."""
    tracker = TurnTracker()
    first = tracker.observe(ConversationItem(id="a1", role="assistant"))
    user = tracker.observe(ConversationItem(id="u1", role="user"))

    second = tracker.observe(ConversationItem(id="a2", role="assistant"))

    assert first is not None and second is not None and user is not None
    assert first.status == TurnStatus.COMPLETED
    assert second.status == TurnStatus.IN_PROGRESS
    assert user.status == TurnStatus.IN_PROGRESS


def test_completed_item_completes_turn() -> None:
    """Test item completion finalizes the turn."""
    tracker = TurnTracker()
    item = ConversationItem(id="a1", role="assistant")
    tracker.observe(item)

    item.status = "completed"
    turn = tracker.observe(item)

    assert turn is not None
    assert turn.is_final
    assert turn.status == TurnStatus.COMPLETED


def test_truncation_is_sticky() -> None:
    """Test a truncated turn stays truncated when its item later completes."""
    tracker = TurnTracker()
    item = ConversationItem(id="a1", role="assistant")
    tracker.observe(item, {"audio": b"\x00" * 9600})

    tracker.truncate("a1", 2400)
    item.status = "completed"
    turn = tracker.observe(item)

    assert turn is not None
    assert turn.status == TurnStatus.TRUNCATED
    assert turn.sample_offset_played == 2400


def test_truncate_unknown_turn() -> None:
    """Test truncating an unknown id is a no-op."""
    assert TurnTracker().truncate("missing", 10) is None


def test_prune_removes_deleted_items() -> None:
    """Test turns follow conversation deletions."""
    tracker = TurnTracker()
    tracker.observe(ConversationItem(id="a1", role="assistant"))
    tracker.observe(ConversationItem(id="u1", role="user"))

    tracker.prune({"u1"})

    assert tracker.get("a1") is None
    assert [turn.id for turn in tracker.turns] == ["u1"]
