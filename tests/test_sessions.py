import pytest

from conftest import OWNER, face, feed, unit
from privacy_shield.decision_engine import DecisionEngine
from privacy_shield.exceptions import PersistenceWriteFailed
from privacy_shield.recognizer import Recognizer


def test_enrollment_commits_after_required_samples(engine, settings, locator, extractor, recognizer, shield):
    settings.max_enrollment_samples = 5
    box = face(0.3)
    extractor.embeddings[box] = OWNER
    # Two frames without a face must not count towards the sample total.
    locator.script = [[box], [], [box], [box], [], [box]]
    locator.boxes = [box]
    results = []

    assert engine.start_enrollment("  alice  ", on_complete=results.append) is True
    assert engine.is_enrolling is True

    feed(engine, 6)
    assert engine.session_progress() == (4, 5)
    assert recognizer.is_enrolled() is False

    feed(engine, 1)
    assert results == [True]
    assert engine.is_enrolling is False
    assert recognizer.enrolled_labels() == ["alice"]
    assert len(recognizer.identity("alice").embeddings) == 5
    # Capture frames never feed the shield decision.
    assert shield.visible is False
    assert engine.state.consecutive_stranger_frames == 0


def test_enrollment_rejects_blank_label(engine):
    results = []

    assert engine.start_enrollment("   ", on_complete=results.append) is False
    assert results == [False]
    assert engine.is_enrolling is False


def test_second_session_is_ignored_while_one_is_running(engine):
    assert engine.start_enrollment("alice") is True

    assert engine.start_enrollment("bob") is False
    assert engine.start_calibration() is False
    assert engine.session_progress() == (0, engine.settings.max_enrollment_samples)


def test_cancel_enrollment_reports_failure_and_discards_samples(engine, locator, recognizer):
    locator.boxes = [face(0.3)]
    results = []
    engine.start_enrollment("alice", on_complete=results.append)
    feed(engine, 2)

    assert engine.cancel_session() is True
    assert results == [False]
    assert recognizer.is_enrolled() is False
    assert engine.cancel_session() is False


def test_re_enrolling_replaces_samples(engine, settings, locator, extractor, recognizer):
    settings.max_enrollment_samples = 2
    box = face(0.3)
    locator.boxes = [box]

    engine.start_enrollment("alice")
    feed(engine, 2)
    created = recognizer.identity("alice").created_at

    extractor.embeddings[box] = unit(5)
    engine.start_enrollment("alice")
    feed(engine, 2)

    identity = recognizer.identity("alice")
    assert identity.created_at == created
    assert all(vector[5] == 1.0 for vector in identity.embeddings)


def test_calibration_uses_mean_face_width(engine, settings, locator):
    settings.calibration_sample_count = 4
    locator.script = [[face(0.20)], [], [face(0.30), face(0.1, x=0.6)], [face(0.25)], [face(0.25)]]
    results = []

    assert engine.start_calibration(on_complete=lambda ok, value: results.append((ok, value))) is True
    feed(engine, 5)

    assert results == [(True, pytest.approx(0.25))]
    assert settings.min_face_size == pytest.approx(0.25)
    assert engine.is_calibrating is False


def test_cancel_calibration_reports_failure(engine, locator):
    locator.boxes = [face(0.3)]
    results = []
    engine.start_calibration(on_complete=lambda ok, value: results.append((ok, value)))
    feed(engine, 3)

    engine.cancel_session()

    assert results == [(False, 0.0)]
    assert engine.settings.min_face_size == 0.15


def test_starting_a_session_restarts_debounce(engine):
    feed(engine, 2)
    assert engine.state.consecutive_stranger_frames == 2

    engine.start_calibration()

    assert engine.state.consecutive_stranger_frames == 0


def test_reset_enrollment_for_unknown_label(engine, recognizer):
    recognizer.commit_identity("alice", [OWNER])

    assert engine.reset_enrollment("bob") is False
    assert engine.reset_enrollment("alice") is True
    assert recognizer.is_enrolled() is False


class UnwritableStore:
    def load(self):
        return {}

    def save_all(self, identities):
        raise PersistenceWriteFailed("disk full")


def test_enrollment_reports_success_when_save_fails(settings, locator, extractor, shield, listener):
    settings.max_enrollment_samples = 2
    locator.boxes = [face(0.3)]
    recognizer = Recognizer(extractor=extractor, store=UnwritableStore())
    engine = DecisionEngine(settings, locator, recognizer, shield, listener)
    results = []

    engine.start_enrollment("alice", on_complete=results.append)
    feed(engine, 2)

    assert results == [True]
    assert recognizer.is_enrolled() is True
    assert engine.is_enrolling is False
