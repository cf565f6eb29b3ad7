"""Shared helpers: slugs, hashing, names, ages, locking and shell execution."""

from __future__ import annotations

import abc
import base64
import hashlib
import logging
import re
import subprocess
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, TypeVar

from filelock import FileLock

log = logging.getLogger(__name__)

CHECKBOX_EMOJI = "✔"
CROSS_EMOJI = "✖"
EQUAL_EMOJI = "~"
INFO_EMOJI = "[i]"

NAME_LABEL = "skate.io/name"
NAMESPACE_LABEL = "skate.io/namespace"

_RE_CIDR = re.compile(r"^([0-9]{1,3}\.){3}[0-9]{1,3}(\Z|/(16|24))")
_RE_IP = re.compile(r"^([0-9]{1,3}\.){3}[0-9]{1,3}\Z")

T = TypeVar("T")


class ExecError(RuntimeError):
    """A shell command exited unsuccessfully."""

    def __init__(self, command: str, returncode: int, stderr: str) -> None:
        super().__init__(f"{command} failed: exit code {returncode}, {stderr.strip()}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class ShellExec(abc.ABC):
    """Something that runs a command and returns its standard output."""

    @abc.abstractmethod
    def exec(self, command: str, args: Iterable[str]) -> str:
        """Run ``command`` with ``args`` and return its output."""


class SubprocessExec(ShellExec):
    """Runs commands as local subprocesses."""

    def exec(self, command: str, args: Iterable[str]) -> str:
        argv = [command, *args]
        try:
            completed = subprocess.run(argv, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise ExecError(" ".join(argv), -1, str(exc)) from exc
        if completed.returncode != 0:
            raise ExecError(" ".join(argv), completed.returncode, completed.stderr)
        return completed.stdout.strip()


def _transliterate(char: str) -> str:
    decomposed = unicodedata.normalize("NFKD", char)
    ascii_part = "".join(c for c in decomposed if c.isascii())
    return ascii_part or "-"


def slugify(s: str) -> str:
    """Lower-case ``s`` and join its alphanumeric runs with single dashes."""
    out: list[str] = []
    prev_is_dash = True
    expanded = "".join(c if c.isascii() else _transliterate(c) for c in s)
    for char in expanded:
        if "a" <= char <= "z" or "0" <= char <= "9":
            out.append(char)
            prev_is_dash = False
        elif "A" <= char <= "Z":
            out.append(char.lower())
            prev_is_dash = False
        elif not prev_is_dash:
            out.append("-")
            prev_is_dash = True
    slug = "".join(out)
    return slug[:-1] if slug.endswith("-") else slug


def hash_string(obj: Any) -> str:
    """Return a stable 64-bit hexadecimal hash of ``obj``."""
    if isinstance(obj, bytes):
        data = obj
    elif isinstance(obj, str):
        data = obj.encode("utf-8")
    else:
        data = repr(obj).encode("utf-8")
    digest = hashlib.blake2b(data, digest_size=8).digest()
    return format(int.from_bytes(digest, "big"), "x")


@dataclass(frozen=True)
class NamespacedName:
    """A resource name qualified by its namespace."""

    name: str
    namespace: str

    @classmethod
    def parse(cls, s: str) -> "NamespacedName":
        """Split ``name.namespace``: the first and last dotted parts."""
        parts = s.split(".")
        return cls(name=parts[0], namespace=parts[-1])

    def __str__(self) -> str:
        return f"{self.name}.{self.namespace}"


def metadata_name(metadata: Mapping[str, Any]) -> NamespacedName:
    """Read the skate name and namespace labels from object metadata."""
    labels = metadata.get("labels") or {}
    name = labels.get(NAME_LABEL)
    namespace = labels.get(NAMESPACE_LABEL)
    if name is None:
        raise ValueError(f"metadata missing {NAME_LABEL} label")
    if namespace is None:
        raise ValueError(f"metadata missing {NAMESPACE_LABEL} label")
    return NamespacedName(name, namespace)


def age(date_time: datetime) -> str:
    """Age of ``date_time`` with one unit of resolution, e.g. ``2d``."""
    now = datetime.now(date_time.tzinfo) if date_time.tzinfo else datetime.now()
    delta = now - date_time
    if delta < timedelta(0):
        return ""
    seconds = int(delta.total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = seconds // 3600
    if hours < 24:
        return f"{hours}h"
    return f"{seconds // 86400}d"


def spawn_orphan_process(cmd: str, args: Iterable[str]) -> None:
    """Start a detached process, ignoring any failure to start it."""
    try:
        subprocess.Popen(
            [cmd, *args],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError:
        pass


def lock_file(path: str | Path, callback: Callable[[], T]) -> T:
    """Run ``callback`` while holding an exclusive lock on ``path``."""
    lock_path = Path(path)
    try:
        lock_path.open("w").close()
    except OSError as exc:
        raise OSError(f"failed to create/open lock file: {exc}") from exc
    log.info("waiting for lock on %s", lock_path)
    with FileLock(str(lock_path)):
        log.info("locked %s", lock_path)
        try:
            return callback()
        finally:
            log.info("unlocked %s", lock_path)


def tabled_display_option(value: Any) -> str:
    """Render an optional value for a table, ``-`` when absent."""
    return "-" if value is None else str(value)


def transfer_file_cmd(contents: str, remote_path: str) -> str:
    """Shell command that writes ``contents`` to ``remote_path`` as root."""
    encoded = base64.b64encode(contents.encode("utf-8")).decode("ascii")
    return f"sudo bash -c -eu 'echo {encoded}| base64 --decode > {remote_path}'"


def is_cidr(value: str) -> bool:
    """Whether ``value`` looks like an IPv4 address, optionally /16 or /24."""
    return _RE_CIDR.match(value) is not None


def is_ip(value: str) -> bool:
    """Whether ``value`` looks like a dotted IPv4 address."""
    return _RE_IP.match(value) is not None