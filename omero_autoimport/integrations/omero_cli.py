"""Blocking wrapper around the ``omero`` command-line client.

Every external operation the pipeline performs (import, login, upload,
annotation creation, annotation linking) is one subprocess call here.
Each call either returns its result or raises ``OmeroCommandError``; the
pipeline drivers turn that into a per-file outcome.

Impersonation is explicit: every call that acts as a user takes the
admin credential and the target user name, and is run with ``--sudo``.
"""

import logging
import pwd
import re
import subprocess
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from omero_autoimport.schemas.ingest import AdminCredential, ImportIdentity

logger = logging.getLogger(__name__)

DEFAULT_PARALLEL_UPLOAD = 4
DEFAULT_DEPTH = 10
DEFAULT_IMPORT_TIMEOUT = 3600.0
DEFAULT_COMMAND_TIMEOUT = 300.0

# "OriginalFile:123", "FileAnnotation:45", ...
_OBJECT_REF = re.compile(r"[A-Za-z]+:[0-9]+")
_REDACTED = "********"


class OmeroCommandError(Exception):
    """Raised when an ``omero`` invocation fails, times out, or cannot start."""

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(f"{operation} failed: {detail}")
        self.operation = operation
        self.detail = detail


class CommandResult(BaseModel):
    """Completed ``omero`` invocation. ``args`` has secrets redacted."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""


class OmeroSession(BaseModel):
    """An impersonated OMERO session, addressed by its key."""

    model_config = ConfigDict(frozen=True)

    identity_name: str
    key: str


def _last_line(text: str) -> str:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else ""


class OmeroCli:
    """Runs ``omero`` subcommands, optionally as the OMERO service user.

    Usage::

        cli = OmeroCli("/opt/omero/server/venv3/bin/omero", "localhost", run_as="omero-server")
        cli.import_file(path, identity, credential)
        session = cli.login("alice", credential)
        ref = cli.upload(session, readme_path)
    """

    def __init__(
        self,
        omero_bin: str | Path,
        host: str,
        *,
        client_dir: str | Path | None = None,
        run_as: str | None = None,
        workdir: str | Path | None = None,
        parallel_upload: int = DEFAULT_PARALLEL_UPLOAD,
        depth: int = DEFAULT_DEPTH,
        import_timeout: float = DEFAULT_IMPORT_TIMEOUT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._omero_bin = str(omero_bin)
        self._host = host
        self._client_dir = str(client_dir) if client_dir else None
        self._run_as = run_as or None
        self._workdir = Path(workdir) if workdir else None
        self._parallel_upload = parallel_upload
        self._depth = depth
        self._import_timeout = import_timeout or None
        self._command_timeout = command_timeout or None
        self._runner = runner

    # ------------------------------------------------------------------
    # Process plumbing
    # ------------------------------------------------------------------

    def _prefix(self) -> list[str]:
        """``omero`` invocation, wrapped in ``sudo -u`` when a service user is set."""
        if not self._run_as:
            return [self._omero_bin]
        try:
            home = pwd.getpwnam(self._run_as).pw_dir
        except KeyError:
            raise OmeroCommandError("setup", f"no such system user {self._run_as!r}") from None
        return ["sudo", "-u", self._run_as, f"HOME={home}", self._omero_bin]

    def _run(
        self,
        operation: str,
        args: list[str],
        *,
        timeout: float | None,
        secret: str | None = None,
    ) -> CommandResult:
        cmd = self._prefix() + args
        shown = [_REDACTED if secret and secret in a else a for a in cmd]
        cwd = self._workdir if self._workdir and self._workdir.is_dir() else None
        logger.debug("Running %s: %s", operation, " ".join(shown))

        try:
            proc = self._runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired:
            raise OmeroCommandError(operation, f"timed out after {timeout:.0f}s") from None
        except OSError as exc:
            raise OmeroCommandError(operation, f"cannot run {cmd[0]}: {exc}") from exc

        result = CommandResult(
            args=shown,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )
        if result.returncode != 0:
            detail = _last_line(result.stderr) or _last_line(result.stdout) or "no output"
            raise OmeroCommandError(operation, f"exit code {result.returncode}: {detail}")
        return result

    def _session_args(self, session: OmeroSession) -> list[str]:
        return [f"-s={self._host}", f"-k={session.key}"]

    def _object_ref(self, operation: str, result: CommandResult) -> str:
        ref = _last_line(result.stdout)
        if not _OBJECT_REF.fullmatch(ref):
            raise OmeroCommandError(operation, f"unexpected output {ref!r}")
        return ref

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def import_file(
        self, path: str | Path, identity: ImportIdentity, credential: AdminCredential
    ) -> CommandResult:
        """Import ``path`` in place into the identity's dataset, as that user."""
        password = credential.password.get_secret_value()
        args = ["import"]
        if self._client_dir:
            args.append(f"--clientdir={self._client_dir}")
        args += [
            "-C",
            f"-s={self._host}",
            f"-u={identity.identity_name}",
            f"-w={password}",
            f"--sudo={credential.user}",
            "--transfer=ln_s",
            "--skip=upgrade",
            f"--parallel-upload={self._parallel_upload}",
            f"--depth={self._depth}",
            f"-d={identity.container_id}",
            str(path),
        ]
        return self._run("import", args, timeout=self._import_timeout, secret=password)

    def login(self, identity_name: str, credential: AdminCredential) -> OmeroSession:
        """Open a new session as ``identity_name`` and return its key."""
        password = credential.password.get_secret_value()
        self._run(
            "login",
            [
                "login",
                "-C",
                f"-s={self._host}",
                f"-u={identity_name}",
                f"-w={password}",
                f"--sudo={credential.user}",
            ],
            timeout=self._command_timeout,
            secret=password,
        )
        result = self._run("login", ["sessions", "key"], timeout=self._command_timeout)
        key = _last_line(result.stdout)
        if not key:
            raise OmeroCommandError("login", "no session key returned")
        return OmeroSession(identity_name=identity_name, key=key)

    def upload(self, session: OmeroSession, path: str | Path) -> str:
        """Upload raw file bytes; returns ``OriginalFile:<id>``."""
        result = self._run(
            "upload",
            ["upload", *self._session_args(session), str(path)],
            timeout=self._command_timeout,
        )
        return self._object_ref("upload", result)

    def new_file_annotation(self, session: OmeroSession, original_file: str) -> str:
        """Wrap an uploaded file as a FileAnnotation; returns ``FileAnnotation:<id>``."""
        result = self._run(
            "create-annotation",
            ["obj", *self._session_args(session), "new", "FileAnnotation", f"file={original_file}"],
            timeout=self._command_timeout,
        )
        return self._object_ref("create-annotation", result)

    def link_annotation(self, session: OmeroSession, container_id: int, annotation: str) -> str:
        """Link an annotation to a dataset; returns ``DatasetAnnotationLink:<id>``."""
        result = self._run(
            "link",
            [
                "obj",
                *self._session_args(session),
                "new",
                "DatasetAnnotationLink",
                f"parent=Dataset:{container_id}",
                f"child={annotation}",
            ],
            timeout=self._command_timeout,
        )
        return self._object_ref("link", result)
