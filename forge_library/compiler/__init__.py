"""Selection validation and build script generation.

Public Interface:
    - validate_selection / validate_options: Dependency and source checks
    - ValidationResult / ValidationFailedError: Validation outcome and error
    - generate_script: Pure script generator
    - check_source_url: Custom module URL check
    - Checkpoint / parse_progress_line / parse_info_line: Progress markers
"""

from .progress import FINAL_STEP
from .progress import Checkpoint
from .progress import parse_info_line
from .progress import parse_progress_line
from .progress import strip_ansi
from .script import DEFAULT_BASE_DEPENDENCIES
from .script import generate_script
from .sources import SourceCheck
from .sources import check_source_url
from .validator import ValidationFailedError
from .validator import ValidationResult
from .validator import validate_options
from .validator import validate_selection

__all__ = [
    "FINAL_STEP",
    "Checkpoint",
    "parse_info_line",
    "parse_progress_line",
    "strip_ansi",
    "DEFAULT_BASE_DEPENDENCIES",
    "generate_script",
    "SourceCheck",
    "check_source_url",
    "ValidationFailedError",
    "ValidationResult",
    "validate_options",
    "validate_selection",
]
