"""Progress markers shared by the script generator and the executor.

The generated script announces checkpoints with a dedicated tag and a
number, `[PROGRESS] <percent> <label>`, so the executor never has to
recognise human-readable phrasing. Percentages are a rough guide to how far
a build has come, not a measure of work done.
"""

import re
from enum import IntEnum

PROGRESS_TAG = "[PROGRESS]"
INFO_TAG = "[INFO]"
FINAL_STEP = "Build finished"

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
_PROGRESS_LINE = re.compile(r"\[PROGRESS\]\s+(\d{1,3})(?:\s+(.*))?$")
_INFO_LINE = re.compile(r"\[INFO\]\s*(.*)$")


class Checkpoint(IntEnum):
    """Build checkpoints and the progress each one stands for."""

    DEPENDENCIES = 10
    SOURCE_DOWNLOADED = 20
    MODULES_FETCHED = 30
    CONFIGURED = 45
    BUILD_STARTED = 60
    INSTALLED = 80
    SERVICE_UNIT = 90
    RUNTIME_CONFIG = 93
    SERVICE_STARTED = 96
    FINISHED = 100

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    Checkpoint.DEPENDENCIES: "Installing build dependencies",
    Checkpoint.SOURCE_DOWNLOADED: "Source downloaded",
    Checkpoint.MODULES_FETCHED: "Modules fetched",
    Checkpoint.CONFIGURED: "Configure complete",
    Checkpoint.BUILD_STARTED: "Build started",
    Checkpoint.INSTALLED: "Installed",
    Checkpoint.SERVICE_UNIT: "Service unit created",
    Checkpoint.RUNTIME_CONFIG: "Runtime configuration written",
    Checkpoint.SERVICE_STARTED: "Service started",
    Checkpoint.FINISHED: FINAL_STEP,
}


def strip_ansi(line: str) -> str:
    """Remove terminal colour and cursor escape sequences."""
    return _ANSI_ESCAPE.sub("", line)


def parse_progress_line(line: str) -> int | None:
    """Extract the percentage from a progress marker line.

    Args:
        line: One line of build output, ANSI codes already stripped

    Returns:
        Percentage clamped to 0-100, or None when the line carries no marker

    Example:
        >>> parse_progress_line("[PROGRESS] 45 Configure complete")
        45
        >>> parse_progress_line("checking for OS") is None
        True
    """
    match = _PROGRESS_LINE.search(line.strip())
    if match is None:
        return None
    return max(0, min(100, int(match.group(1))))


def parse_info_line(line: str) -> str | None:
    """Extract the message from an `[INFO] message` line, if any."""
    match = _INFO_LINE.search(line.strip())
    if match is None:
        return None
    message = match.group(1).strip()
    return message or None
