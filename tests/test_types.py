import pytest

from privacy_shield.types import CalibrationSession, EnrollmentSession, FaceBox


def test_face_box_pixels_are_clamped_to_frame():
    box = FaceBox(x=0.9, y=-0.05, width=0.2, height=0.5)

    assert box.to_pixels(100, 200) == (90, 0, 100, 90)


def test_face_box_padding_grows_each_side():
    box = FaceBox(x=0.4, y=0.4, width=0.2, height=0.2)

    assert box.to_pixels(100, 100, padding=0.5) == (30, 30, 70, 70)


def test_session_completion():
    enrollment = EnrollmentSession(label="alice", target_count=4)
    enrollment.captured_embeddings.extend([object(), object()])
    calibration = CalibrationSession(target_count=2, samples=[0.2, 0.4])

    assert enrollment.completed is False
    assert calibration.completed is True
    assert calibration.mean() == pytest.approx(0.3)
