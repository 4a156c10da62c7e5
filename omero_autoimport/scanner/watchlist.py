"""Loaders for the JSON configuration files an import run reads.

- watch list:        ``{"paths": ["/mnt/share/a", ...]}``
- suffix list:       ``<watch dir>/.suffixes.json`` -> ``{"suffixes": [".tif", ...]}``
- admin credential:  ``{"user": "...", "password": "..."}``
"""

import json
from pathlib import Path

from pydantic import ValidationError

from omero_autoimport.schemas.ingest import AdminCredential


class ConfigFatal(Exception):
    """Raised when configuration is unusable and the run must not start."""


class SuffixListError(Exception):
    """Raised when a watch directory's suffix list is missing or empty."""


def _read_json(path: Path) -> object:
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def load_watch_list(path: str | Path) -> list[Path]:
    """Load the ordered list of watch directories.

    Raises:
        ConfigFatal: If the file is unreadable, malformed, or lists no paths.
    """
    path = Path(path)
    try:
        data = _read_json(path)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigFatal(f"cannot read watch list {path}: {exc}") from exc

    paths = data.get("paths") if isinstance(data, dict) else None
    if not isinstance(paths, list):
        raise ConfigFatal(f"no 'paths' array in {path}")
    dirs = [Path(p) for p in paths if isinstance(p, str) and p.strip()]
    if not dirs:
        raise ConfigFatal(f"no paths defined in {path}")
    return dirs


def load_suffixes(watch_dir: str | Path, file_name: str = ".suffixes.json") -> tuple[str, ...]:
    """Load the suffix allow-list stored inside a watch directory.

    Raises:
        SuffixListError: If the file is missing, unreadable, or empty.
    """
    path = Path(watch_dir) / file_name
    try:
        data = _read_json(path)
    except FileNotFoundError as exc:
        raise SuffixListError(f"no {file_name} in {watch_dir}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise SuffixListError(f"cannot read {path}: {exc}") from exc

    raw = data.get("suffixes") if isinstance(data, dict) else None
    if not isinstance(raw, list):
        raw = []
    suffixes = tuple(s.strip() for s in raw if isinstance(s, str) and s.strip())
    if not suffixes:
        raise SuffixListError(f"empty suffix list in {path}")
    return suffixes


def load_admin_credential(path: str | Path) -> AdminCredential:
    """Load the OMERO admin account used for ``--sudo``.

    Raises:
        ConfigFatal: If the file is unreadable or user/password is empty.
    """
    path = Path(path)
    try:
        data = _read_json(path)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigFatal(f"cannot read admin credentials {path}: {exc}") from exc

    if not isinstance(data, dict) or not data.get("user") or not data.get("password"):
        raise ConfigFatal(f"empty admin user or password in {path}")
    try:
        return AdminCredential(user=data["user"], password=data["password"])
    except ValidationError as exc:
        raise ConfigFatal(f"invalid admin credentials in {path}: {exc}") from exc
