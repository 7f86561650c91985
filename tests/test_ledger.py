"""
ClipCraft — Edit Ledger Tests
Undo/redo cursor semantics, materialization rules, edit-record validation
and split segments.

Run with: pytest tests/test_ledger.py -v
"""

import os
import sys
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.bundle import FilterBundle
from core.edits import (
    AddOverlay,
    AddTransition,
    AudioTrack,
    Crop,
    RemoveOverlay,
    RemoveTransition,
    SetFilters,
    SetSpeed,
    SetVolume,
    Split,
    TextOverlay,
    Transition,
    Trim,
    parse_action,
    parse_actions,
)
from core.errors import ClipCraftError, InvalidInputError
from core.export_models import EncodeSettings, ExportJob, MediaInfo
from core.ledger import EditLedger, MaterializedState, fold_actions, split_segments
from presets import resolve_preset


# ---------------------------------------------------------------------------
# Cursor semantics
# ---------------------------------------------------------------------------

class TestCursor:

    def test_empty_ledger(self):
        ledger = EditLedger()
        assert ledger.cursor == -1
        assert not ledger.can_undo
        assert not ledger.can_redo
        assert ledger.undo() is False
        assert ledger.redo() is False
        assert ledger.materialize() == MaterializedState()
        assert ledger.materialize().is_default()

    def test_append_after_undo_truncates(self):
        a, b, c, d = Trim(start=0, end=5), Crop(width=50, height=50), SetSpeed(factor=2), SetVolume(factor=0.5)
        ledger = EditLedger()
        for action in (a, b, c):
            ledger.append(action)
        assert ledger.undo() is True
        assert ledger.append(d) == 2
        assert ledger.actions == (a, b, d)
        assert ledger.cursor == 2
        assert ledger.redo() is False

    def test_undo_redo_walk(self):
        ledger = EditLedger()
        ledger.append(SetSpeed(factor=2))
        ledger.append(SetSpeed(factor=3))
        assert ledger.materialize().speed == 3
        ledger.undo()
        assert ledger.materialize().speed == 2
        assert ledger.can_redo
        ledger.undo()
        assert ledger.materialize().speed == 1.0
        assert not ledger.can_undo
        ledger.redo()
        ledger.redo()
        assert ledger.materialize().speed == 3
        assert len(ledger) == 2

    def test_history_marks_active(self):
        ledger = EditLedger()
        ledger.append(Trim(start=1, end=2))
        ledger.append(SetSpeed(factor=2))
        ledger.undo()
        history = ledger.history()
        assert [h["active"] for h in history] == [True, False]
        assert history[1]["description"] == "Change speed to 2x"
        assert history[0]["kind"] == "trim"

    def test_clear(self):
        ledger = EditLedger([Trim(start=1, end=2)])
        assert ledger.cursor == 0
        ledger.clear()
        assert ledger.cursor == -1
        assert len(ledger) == 0

    def test_concurrent_appends_are_atomic(self):
        ledger = EditLedger()

        def worker():
            for _ in range(50):
                ledger.append(SetVolume(factor=0.5))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(ledger) == 200
        assert ledger.cursor == 199


# ---------------------------------------------------------------------------
# Materialization
# ---------------------------------------------------------------------------

class TestMaterialize:

    def test_scalar_edits_last_wins(self):
        state = fold_actions([
            Trim(start=0, end=5), Trim(start=2, end=8),
            SetFilters(filters=resolve_preset("vintage"), preset="vintage"),
            SetFilters(filters=FilterBundle(contrast=140)),
            SetSpeed(factor=2), SetSpeed(factor=0.5),
            SetVolume(factor=1.5),
        ])
        assert state.trim_range == (2, 8)
        assert state.filters == FilterBundle(contrast=140)
        assert state.speed == 0.5
        assert state.volume == 1.5

    def test_overlays_accumulate_by_id(self):
        first = TextOverlay(text="Hello", start=0, end=2)
        second = TextOverlay(text="World", start=1, end=3)
        edited = first.replace(text="Hello again")
        state = fold_actions([AddOverlay(overlay=first), AddOverlay(overlay=second), AddOverlay(overlay=edited)])
        assert [o.text for o in state.overlays] == ["Hello again", "World"]

    def test_remove_overlay(self):
        o = TextOverlay(text="bye")
        state = fold_actions([AddOverlay(overlay=o), RemoveOverlay(overlay_id=o.id)])
        assert state.overlays == ()

    def test_remove_unknown_is_noop(self):
        state = fold_actions([RemoveTransition(transition_id="missing")])
        assert state == MaterializedState()

    def test_transitions_accumulate(self):
        t1 = Transition(kind="fade", start=0, duration=1)
        t2 = Transition(kind="wipe", start=4, duration=0.5, direction="up")
        state = fold_actions([AddTransition(transition=t1), AddTransition(transition=t2),
                              RemoveTransition(transition_id=t1.id)])
        assert state.transitions == (t2,)

    def test_split_points_last_wins(self):
        state = fold_actions([Split(points=[5]), Split(points=[12, 3, 3])])
        assert state.split_points == (3, 12)

    def test_unknown_action_rejected(self):
        with pytest.raises(TypeError):
            fold_actions([object()])


# ---------------------------------------------------------------------------
# Edit record validation
# ---------------------------------------------------------------------------

class TestRecords:

    def test_trim_end_must_follow_start(self):
        with pytest.raises(InvalidInputError):
            Trim(start=5, end=5)

    def test_crop_must_fit(self):
        with pytest.raises(InvalidInputError):
            Crop(x=60, y=0, width=50, height=50)
        with pytest.raises(InvalidInputError):
            Crop(width=0, height=10)

    def test_split_needs_points(self):
        with pytest.raises(InvalidInputError):
            Split(points=[])
        with pytest.raises(InvalidInputError):
            Split(points=[-1])

    def test_speed_rules(self):
        assert SetSpeed(factor=10).factor == 4.0
        assert SetSpeed(factor=0.1).factor == 0.25
        with pytest.raises(InvalidInputError):
            SetSpeed(factor=0)
        with pytest.raises(InvalidInputError):
            SetSpeed(factor=-2)

    def test_overlay_window(self):
        with pytest.raises(InvalidInputError):
            TextOverlay(text="x", start=4, end=2)
        o = TextOverlay(text="x", x=150, y=-3, background_opacity=7, color="bad")
        assert (o.x, o.y, o.background_opacity, o.color) == (100, 0, 1.0, "#ffffff")

    def test_transition_honors_only_relevant_fields(self):
        fade = Transition(kind="fade", direction="up")
        assert fade.effective_direction is None
        assert fade.effective_intensity == 0.5
        slide = Transition(kind="slide", intensity=0.9)
        assert slide.effective_direction == "left"
        assert slide.effective_intensity is None
        assert slide.effective_easing == "ease-in-out"
        assert Transition(kind="zoom", intensity=3).intensity == 1.0

    def test_audio_track_clamps_volume(self):
        assert AudioTrack(volume=9).volume == 2.0
        with pytest.raises(InvalidInputError):
            AudioTrack(extension="../mp3")

    def test_descriptions_filled(self):
        assert SetFilters(filters=FilterBundle(), preset="noir").description == "Apply noir filter"
        assert SetVolume(factor=0.5).description == "Set volume to 50%"
        assert Trim(start=1, end=2.5).description == "Trim 1.00s - 2.50s"
        assert Trim(start=1, end=2, description="custom").description == "custom"

    def test_parse_actions(self):
        actions = parse_actions([
            {"kind": "trim", "start": 1, "end": 4},
            {"kind": "set_filters", "filters": {"blackAndWhite": True}, "preset": "blackAndWhite"},
            {"kind": "add_overlay", "overlay": {"text": "Title", "start": 0, "end": 2, "animation": "fade"}},
            {"kind": "set_speed", "factor": 1.5},
        ])
        assert [a.kind for a in actions] == ["trim", "set_filters", "add_overlay", "set_speed"]
        assert actions[1].filters.black_and_white is True
        assert parse_action({"kind": "split", "points": [4, 2]}).points == (2, 4)

    def test_parse_unknown_kind(self):
        with pytest.raises(InvalidInputError):
            parse_action({"kind": "explode"})

    @pytest.mark.parametrize("build", [
        lambda: Trim(start=5, end=2),
        lambda: Crop(width=0, height=10),
        lambda: Split(points=[]),
        lambda: TextOverlay(text="x", start=3, end=1),
        lambda: Transition(duration=0),
        lambda: SetVolume(factor=-1),
        lambda: TextOverlay.model_validate({"text": "x", "font_size": 1}),
        lambda: parse_actions([{"kind": "trim", "start": 4, "end": 1}]),
        lambda: parse_action({"kind": "add_overlay", "overlay": {"text": "x", "start": 3, "end": 1}}),
    ])
    def test_bad_records_raise_invalid_input(self, build):
        with pytest.raises(InvalidInputError) as exc_info:
            build()
        assert isinstance(exc_info.value, ClipCraftError)
        assert exc_info.value.kind == "invalid_input"

    def test_invalid_input_message_names_the_problem(self):
        with pytest.raises(InvalidInputError, match="must be after start"):
            Trim(start=5, end=2)

    def test_replace_revalidates(self):
        overlay = TextOverlay(text="x", start=1, end=2)
        with pytest.raises(InvalidInputError):
            overlay.replace(end=0.5)

    def test_export_models_raise_invalid_input(self, media):
        with pytest.raises(InvalidInputError):
            MediaInfo(width=0, height=10, duration=1)
        with pytest.raises(InvalidInputError):
            EncodeSettings(audio_bitrate="999k")
        with pytest.raises(InvalidInputError):
            ExportJob.from_state(MaterializedState(), media, aspect="4:3")


# ---------------------------------------------------------------------------
# Split segments
# ---------------------------------------------------------------------------

class TestSplitSegments:

    def test_durations(self):
        segments = split_segments([10, 25], 30)
        assert segments == [(0.0, 10), (10, 25), (25, 30.0)]
        assert [e - s for s, e in segments] == [10, 15, 5]

    def test_out_of_bounds_points_ignored(self):
        assert split_segments([0, 30, 45, 10, 10], 30) == [(0.0, 10), (10, 30.0)]

    def test_invalid(self):
        with pytest.raises(InvalidInputError):
            split_segments([], 30)
        with pytest.raises(InvalidInputError):
            split_segments([5], 0)
