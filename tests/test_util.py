import sys
from datetime import datetime, timedelta

import pytest

from skatenode.util import (
    ExecError,
    NamespacedName,
    ShellExec,
    SubprocessExec,
    age,
    hash_string,
    is_cidr,
    is_ip,
    lock_file,
    metadata_name,
    slugify,
    tabled_display_option,
    transfer_file_cmd,
)


@pytest.mark.parametrize(
    "delta, expected",
    [
        (timedelta(0), "0s"),
        (timedelta(seconds=20), "20s"),
        (timedelta(minutes=20), "20m"),
        (timedelta(minutes=20 * 60), "20h"),
        (timedelta(minutes=20 * 60 * 24), "20d"),
    ],
)
def test_age(delta, expected):
    now = datetime.now().astimezone()
    assert age(now - delta) == expected


def test_age_in_future_is_empty():
    assert age(datetime.now().astimezone() + timedelta(hours=1)) == ""


def test_slugify_basic():
    assert slugify("Hello World") == "hello-world"


def test_slugify_collapses_and_trims_dashes():
    assert slugify("--a  b--") == "a-b"


def test_slugify_transliterates():
    assert slugify("Café") == "cafe"


def test_slugify_output_charset():
    slug = slugify("My Cluster #1 / prod!")
    assert all(c.isdigit() or "a" <= c <= "z" or c == "-" for c in slug)
    assert not slug.startswith("-") and not slug.endswith("-")


def test_hash_string_stable_and_hex():
    first = hash_string("manifest")
    assert first == hash_string("manifest")
    assert first != hash_string("other")
    int(first, 16)


def test_namespaced_name_parse_and_str():
    nn = NamespacedName.parse("foo.bar")
    assert nn == NamespacedName("foo", "bar")
    assert str(nn) == "foo.bar"


def test_namespaced_name_parse_single_part():
    assert NamespacedName.parse("foo") == NamespacedName("foo", "foo")


def test_metadata_name():
    meta = {"labels": {"skate.io/name": "web", "skate.io/namespace": "prod"}}
    assert metadata_name(meta) == NamespacedName("web", "prod")


@pytest.mark.parametrize(
    "labels",
    [{"skate.io/namespace": "prod"}, {"skate.io/name": "web"}, {}],
)
def test_metadata_name_missing_labels(labels):
    with pytest.raises(ValueError):
        metadata_name({"labels": labels})


def test_tabled_display_option():
    assert tabled_display_option(None) == "-"
    assert tabled_display_option("x") == "x"


def test_transfer_file_cmd():
    assert (
        transfer_file_cmd("hello", "/tmp/x")
        == "sudo bash -c -eu 'echo aGVsbG8=| base64 --decode > /tmp/x'"
    )


@pytest.mark.parametrize(
    "value, expected",
    [
        ("10.0.0.0/16", True),
        ("10.0.0.0/24", True),
        ("10.0.0.1", True),
        ("10.0.0.0/8", False),
        ("not-an-ip", False),
    ],
)
def test_is_cidr(value, expected):
    assert is_cidr(value) is expected


@pytest.mark.parametrize(
    "value, expected",
    [("192.168.1.1", True), ("192.168.1.1/24", False), ("1.2.3", False)],
)
def test_is_ip(value, expected):
    assert is_ip(value) is expected


def test_lock_file_returns_callback_result(tmp_path):
    path = tmp_path / "lock"
    assert lock_file(path, lambda: 42) == 42
    assert path.exists()


def test_lock_file_propagates_and_releases(tmp_path):
    path = tmp_path / "lock"

    def boom():
        raise KeyError("x")

    with pytest.raises(KeyError):
        lock_file(path, boom)
    assert lock_file(path, lambda: "again") == "again"


def test_lock_file_bad_directory(tmp_path):
    with pytest.raises(OSError):
        lock_file(tmp_path / "missing" / "lock", lambda: 1)


def test_subprocess_exec_output():
    out = SubprocessExec().exec(sys.executable, ["-c", "print('hi')"])
    assert out == "hi"


def test_subprocess_exec_failure():
    with pytest.raises(ExecError) as info:
        SubprocessExec().exec(sys.executable, ["-c", "import sys; sys.exit(3)"])
    assert info.value.returncode == 3


def test_shell_exec_is_abstract():
    with pytest.raises(TypeError):
        ShellExec()