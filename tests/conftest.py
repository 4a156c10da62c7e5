"""Shared fixtures for omero_autoimport tests."""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from omero_autoimport.integrations.omero_cli import CommandResult, OmeroCommandError, OmeroSession
from omero_autoimport.schemas.ingest import AdminCredential

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
WINDOW = timedelta(hours=24)


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("AUTOIMPORT_USE_SOPS", "false")


class BirthTimes:
    """Injectable replacement for ``read_birth_time``.

    Unregistered paths are one hour old. Registering an exception makes
    reading that path's birth time raise it.
    """

    def __init__(self, default: datetime) -> None:
        self.default = default
        self.times: dict[Path, datetime | Exception] = {}

    def set(self, path: Path, when: datetime | Exception) -> None:
        self.times[Path(path)] = when

    def __call__(self, path: Path) -> float:
        when = self.times.get(Path(path), self.default)
        if isinstance(when, Exception):
            raise when
        return when.timestamp()


class FakeOmeroCli:
    """Records every OMERO operation instead of running ``omero``.

    ``fail`` maps (operation, file name or user name) to an error detail.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.fail: dict[tuple[str, str], str] = {}
        self._refs: dict[str, str] = {}
        self._next_id = 1

    def _check(self, operation: str, key: str) -> None:
        if (operation, key) in self.fail:
            raise OmeroCommandError(operation, self.fail[(operation, key)])

    def _new_ref(self, kind: str, file_name: str) -> str:
        ref = f"{kind}:{self._next_id}"
        self._next_id += 1
        self._refs[ref] = file_name
        return ref

    def import_file(self, path, identity, credential) -> CommandResult:
        name = Path(path).name
        self.calls.append(("import", name, identity.identity_name, identity.container_id))
        self._check("import", name)
        return CommandResult(args=["omero", "import", str(path)], returncode=0)

    def login(self, identity_name, credential) -> OmeroSession:
        self.calls.append(("login", identity_name))
        self._check("login", identity_name)
        return OmeroSession(identity_name=identity_name, key=f"key-{identity_name}")

    def upload(self, session, path) -> str:
        name = Path(path).name
        self.calls.append(("upload", name, session.identity_name))
        self._check("upload", name)
        return self._new_ref("OriginalFile", name)

    def new_file_annotation(self, session, original_file) -> str:
        name = self._refs[original_file]
        self.calls.append(("create-annotation", name))
        self._check("create-annotation", name)
        return self._new_ref("FileAnnotation", name)

    def link_annotation(self, session, container_id, annotation) -> str:
        name = self._refs[annotation]
        self.calls.append(("link", name, container_id))
        self._check("link", name)
        return self._new_ref("DatasetAnnotationLink", name)

    def operations(self, kind: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == kind]


@pytest.fixture
def birth_times() -> BirthTimes:
    return BirthTimes(default=NOW - timedelta(hours=1))


@pytest.fixture
def fake_cli() -> FakeOmeroCli:
    return FakeOmeroCli()


@pytest.fixture
def credential() -> AdminCredential:
    return AdminCredential(user="importer", password="s3cret")


def write_json(path: Path, data: object) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


def omero_descriptor(dataset_id: object, user_name: object) -> dict:
    """Descriptor in the default eLabFTW export layout."""
    return {
        "metafold_integration": {
            "external_links": {"omero": {"dataset_id": dataset_id, "user_name": user_name}}
        }
    }
