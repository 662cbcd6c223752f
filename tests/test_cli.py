import pytest

from conftest import OWNER
from privacy_shield.cli import build_parser, main
from privacy_shield.template_store import TemplateStore
from privacy_shield.types import EnrolledIdentity


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("PRIVACY_SHIELD_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("PRIVACY_SHIELD_EMBED_KEY", raising=False)
    return tmp_path


def seed(data_dir, *labels):
    store = TemplateStore(data_dir / "enrolled_faces.db", data_dir / ".embedding.key")
    store.save_all({label: EnrolledIdentity(label, (OWNER,)) for label in labels})
    return store


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_list_without_enrollments(data_dir, capsys):
    assert main(["list"]) == 0
    assert "No faces enrolled." in capsys.readouterr().out


def test_list_shows_labels(data_dir, capsys):
    seed(data_dir, "alice", "bob")

    assert main(["list"]) == 0

    out = capsys.readouterr().out
    assert "alice" in out and "bob" in out


def test_reset_single_label(data_dir, capsys):
    store = seed(data_dir, "alice", "bob")

    assert main(["reset", "--label", "alice"]) == 0
    assert sorted(store.load()) == ["bob"]

    assert main(["reset", "--label", "alice"]) == 1


def test_reset_everything(data_dir):
    store = seed(data_dir, "alice")

    assert main(["reset"]) == 0
    assert store.load() == {}


def test_bad_preferences_exit_with_error(data_dir, capsys):
    (data_dir / "preferences.json").write_text("[]", encoding="utf-8")

    assert main(["list"]) == 1
    assert "Error:" in capsys.readouterr().out


def test_reset_everything_after_key_loss(data_dir, capsys):
    seed(data_dir, "alice")
    (data_dir / ".embedding.key").unlink()

    assert main(["reset"]) == 0

    store = TemplateStore(data_dir / "enrolled_faces.db", data_dir / ".embedding.key")
    assert store.load() == {}
