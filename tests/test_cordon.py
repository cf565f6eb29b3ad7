import pytest

from skatenode.cordon import cordon, is_cordoned, uncordon


def test_cordon_then_uncordon(tmp_path):
    assert is_cordoned(tmp_path) is False
    cordon(tmp_path)
    assert is_cordoned(tmp_path) is True
    assert (tmp_path / "CORDON").exists()
    uncordon(tmp_path)
    assert is_cordoned(tmp_path) is False


def test_uncordon_when_not_cordoned(tmp_path):
    uncordon(tmp_path)
    assert is_cordoned(tmp_path) is False


def test_cordon_truncates_existing_file(tmp_path):
    (tmp_path / "CORDON").write_text("stale")
    cordon(tmp_path)
    assert (tmp_path / "CORDON").read_text() == ""


def test_cordon_twice_is_idempotent(tmp_path):
    cordon(tmp_path)
    cordon(tmp_path)
    assert is_cordoned(tmp_path) is True


def test_cordon_missing_directory_raises(tmp_path):
    with pytest.raises(OSError, match="failed to create cordon file"):
        cordon(tmp_path / "missing")