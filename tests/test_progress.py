"""Unit tests for app.analysis.progress."""
import pytest

from app.analysis.errors import InvalidTransitionError
from app.analysis.progress import Phase, Progress, ProgressTracker


def test_initial_state_idle():
    tracker = ProgressTracker()
    assert tracker.state == Progress(Phase.IDLE, 0, 0, "")
    assert tracker.is_terminal is False


def test_happy_path_notifies_each_transition():
    tracker = ProgressTracker()
    seen = []
    tracker.subscribe(seen.append)

    tracker.start_classification(2, 3)
    tracker.classification_step(1, 2, "a.pdf")
    tracker.classification_step(2, 2, "b.pdf")
    tracker.start_extraction(3)
    tracker.finish()

    assert [p.phase for p in seen] == [
        Phase.CLASSIFICATION, Phase.CLASSIFICATION, Phase.CLASSIFICATION,
        Phase.EXTRACTION, Phase.DONE,
    ]
    assert (seen[0].current, seen[0].total) == (0, 2)
    assert seen[2].message == "Classification: b.pdf"
    assert (seen[3].current, seen[3].total) == (0, 1)
    assert tracker.state.message == "Analyse terminée"
    assert tracker.is_terminal is True


def test_nothing_pending_reports_document_count():
    tracker = ProgressTracker()
    tracker.start_classification(0, 4)
    assert (tracker.state.current, tracker.state.total) == (4, 4)


def test_error_from_any_non_terminal_state():
    for setup in (
        lambda t: None,
        lambda t: t.start_classification(1, 1),
        lambda t: (t.start_classification(0, 1), t.start_extraction(1)),
    ):
        tracker = ProgressTracker()
        setup(tracker)
        tracker.fail("extraction failed: boom")
        assert tracker.phase is Phase.ERROR
        assert tracker.state.message == "Erreur: extraction failed: boom"


def test_fail_after_done_is_ignored():
    tracker = ProgressTracker()
    tracker.start_classification(0, 1)
    tracker.start_extraction(1)
    tracker.finish()
    tracker.fail("late")
    assert tracker.phase is Phase.DONE


def test_illegal_transition_raises():
    tracker = ProgressTracker()
    with pytest.raises(InvalidTransitionError):
        tracker.start_extraction(1)
    with pytest.raises(InvalidTransitionError):
        tracker.finish()


def test_reset_returns_to_idle_and_keeps_observers():
    tracker = ProgressTracker()
    seen = []
    tracker.subscribe(seen.append)
    tracker.fail("x")
    tracker.reset()
    assert tracker.phase is Phase.IDLE
    tracker.start_classification(0, 1)
    assert seen[-1].phase is Phase.CLASSIFICATION


def test_unsubscribe():
    tracker = ProgressTracker()
    seen = []
    unsubscribe = tracker.subscribe(seen.append)
    unsubscribe()
    tracker.start_classification(0, 1)
    assert seen == []


def test_observer_failure_does_not_break_transition():
    tracker = ProgressTracker()

    def broken(_):
        raise RuntimeError("observer down")

    tracker.subscribe(broken)
    tracker.start_classification(0, 1)
    assert tracker.phase is Phase.CLASSIFICATION


def test_to_dict():
    tracker = ProgressTracker()
    tracker.start_classification(3, 5)
    assert tracker.state.to_dict() == {
        "phase": "classification",
        "current": 0,
        "total": 3,
        "message": "Classification de 3 document(s) restant(s)...",
    }
