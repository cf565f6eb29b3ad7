"""Mark a node as cordoned (unschedulable) with a marker file."""

from __future__ import annotations

from pathlib import Path

VAR_PATH = "/var/lib/skate"
CORDON_FILE = "CORDON"


def _cordon_path(var_path: str | Path) -> Path:
    return Path(var_path) / CORDON_FILE


def cordon(var_path: str | Path = VAR_PATH) -> None:
    """Create (or truncate) the cordon marker file."""
    try:
        _cordon_path(var_path).open("w").close()
    except OSError as exc:
        raise OSError(f"failed to create cordon file: {exc}") from exc


def uncordon(var_path: str | Path = VAR_PATH) -> None:
    """Remove the cordon marker file if present."""
    _cordon_path(var_path).unlink(missing_ok=True)


def is_cordoned(var_path: str | Path = VAR_PATH) -> bool:
    """Whether the cordon marker file exists."""
    return _cordon_path(var_path).exists()