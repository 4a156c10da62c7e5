"""Secrets loading: SOPS-encrypted or plain dotenv files."""

import subprocess
from io import StringIO
from pathlib import Path

from dotenv import dotenv_values


def load_secrets(encrypted_path: str | Path) -> dict[str, str | None]:
    """Decrypt a SOPS-encrypted .env file and return its key-value pairs.

    Raises:
        FileNotFoundError: If the encrypted file does not exist.
        subprocess.CalledProcessError: If SOPS decryption fails.
    """
    path = Path(encrypted_path)
    if not path.exists():
        raise FileNotFoundError(f"Encrypted secrets file not found: {path}")

    result = subprocess.run(
        ["sops", "--decrypt", str(path)],
        capture_output=True,
        text=True,
        check=True,
    )
    return dict(dotenv_values(stream=StringIO(result.stdout)))


def load_dotenv_optional(dotenv_path: str | Path) -> dict[str, str | None]:
    """Load a plain .env file, or return an empty mapping if there is none.

    Deployments driven purely by the process environment (cron, systemd
    units) have no dotenv file at all.
    """
    path = Path(dotenv_path)
    if not path.exists():
        return {}
    return dict(dotenv_values(path))
