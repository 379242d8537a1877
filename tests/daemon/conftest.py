"""Fixtures for daemon API tests.

The daemon runs its real executor and script generator, but FORGED_SHELL
points at a stand-in interpreter that never executes the generated script.
It reads the script to decide what to do:

- `-O0` in the compiler flags: print an error and exit 4
- `--with-debug`: sleep 30 seconds (for cancellation tests)
- otherwise: print progress markers and exit 0
"""

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

FAKE_SHELL = """#!/bin/sh
script="$1"
echo "[INFO] Running $(basename "$script")"
echo "[PROGRESS] 45 Configure complete"
if grep -q -- "-O0 " "$script"; then
    echo "configure: error: forced failure" >&2
    exit 4
fi
if grep -q -- "--with-debug" "$script"; then
    sleep 30
fi
echo "[PROGRESS] 80 Installed"
"""


@pytest.fixture
def daemon_env(mock_storage_env: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolated FORGED_HOME with the stand-in build interpreter."""
    shell = mock_storage_env / "fake-shell"
    shell.write_text(FAKE_SHELL)
    shell.chmod(0o755)
    monkeypatch.setenv("FORGED_SHELL", str(shell))
    monkeypatch.setenv("FORGED_EVENTS_POLL_SECONDS", "0.05")
    monkeypatch.setenv("FORGED_CANCEL_GRACE_SECONDS", "2")
    return mock_storage_env


@pytest.fixture
def client(daemon_env: Path) -> Generator[TestClient, None, None]:
    """Create FastAPI test client with the application lifespan running."""
    from forged.main import app

    with TestClient(app) as test_client:
        yield test_client
