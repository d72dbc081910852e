"""Rust-style error display for runweaver definition, run and lock errors."""

from __future__ import annotations

import inspect
import linecache
import os
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Absolute path to the runweaver package directory.
# Used by _find_user_frame to distinguish library frames from user code.
_RUNWEAVER_PKG_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ErrorCode(str, Enum):
    """Error codes for runweaver errors.

    Organized by category:
    - E001-E099: Workflow definition errors
    - E100-E199: Run state errors
    - E200-E299: Configuration errors
    - E300-E399: Run lock errors
    """

    # Workflow definition (E001-E099)
    DEFINITION_NO_STARTING_NODES = 'E001'
    DEFINITION_DANGLING_CONNECTION = 'E002'
    DEFINITION_DUPLICATE_NODE_ID = 'E003'
    DEFINITION_NOT_FOUND = 'E004'

    # Run state (E100-E199)
    RUN_NOT_FOUND = 'E100'
    TASK_RUN_DUPLICATE = 'E101'
    TASK_RUN_NOT_FOUND = 'E102'
    TASK_RUN_INVALID_TRANSITION = 'E103'

    # Configuration (E200-E299)
    CONFIG_INVALID = 'E200'
    CONFIG_INVALID_DATABASE_URL = 'E201'

    # Run lock (E300-E399)
    LOCK_TIMEOUT = 'E300'
    LOCK_REENTRY = 'E301'
    LOCK_BACKEND_FAILED = 'E302'
    LOCK_NOT_HELD = 'E303'


class _Colors:
    """ANSI escape codes for terminal colors."""

    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'


class _NoColors:
    """No-op color codes for non-TTY output."""

    RESET = ''
    BOLD = ''
    RED = ''
    BLUE = ''
    CYAN = ''
    GREEN = ''


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def _should_use_colors() -> bool:
    """Determine if colors should be used in output."""
    if _env_flag('RUNWEAVER_FORCE_COLOR'):
        return True

    # NO_COLOR standard (https://no-color.org/)
    if os.environ.get('NO_COLOR') is not None:
        return False

    return hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()


@dataclass
class SourceLocation:
    """Source code location information."""

    file: str
    line: int

    @classmethod
    def from_frame(cls, frame: Any) -> SourceLocation:
        return cls(file=frame.f_code.co_filename, line=frame.f_lineno)

    def get_source_line(self) -> str | None:
        line = linecache.getline(self.file, self.line)
        return line.rstrip('\n') if line else None

    def format_short(self) -> str:
        return f'{self.file}:{self.line}'


@dataclass
class RunweaverError(Exception):
    """Base exception for runweaver errors.

    Rendered Rust-style:
    - Error code
    - Source location of the calling user code, with snippet
    - Notes and help text
    """

    message: str
    code: ErrorCode | None = None
    location: SourceLocation | None = None
    notes: list[str] = field(default_factory=lambda: [])
    help_text: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

        if self.location is None:
            user_frame = _find_user_frame()
            if user_frame is not None:
                self.location = SourceLocation.from_frame(user_frame)

    def with_note(self, note: str) -> RunweaverError:
        """Add a note to the error (fluent API)."""
        self.notes.append(note)
        return self

    def with_help(self, help_text: str) -> RunweaverError:
        """Set help text (fluent API)."""
        self.help_text = help_text
        return self

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        """Format the error in Rust style."""
        if use_colors is None:
            use_colors = _should_use_colors()

        c = _Colors if use_colors else _NoColors
        lines: list[str] = ['']

        code_part = f'[{self.code.value}]' if self.code else ''
        lines.append(f'{c.BOLD}{c.RED}error{code_part}:{c.RESET} {self.message}')

        if self.location:
            lines.append(
                f'  {c.BLUE}-->{c.RESET} {c.CYAN}{self.location.format_short()}{c.RESET}'
            )
            source_line = self.location.get_source_line()
            if source_line:
                line_num = str(self.location.line)
                padding = ' ' * len(line_num)
                stripped = source_line.lstrip()
                underline = ' ' * (len(source_line) - len(stripped)) + '^' * len(stripped)
                lines.append(f'   {c.BLUE}{padding}|{c.RESET}')
                lines.append(f'   {c.BLUE}{line_num}|{c.RESET} {source_line}')
                lines.append(f'   {c.BLUE}{padding}|{c.RESET} {c.RED}{underline}{c.RESET}')

        for note in self.notes:
            first, *rest = note.split('\n')
            lines.append(f'   {c.BLUE}={c.RESET} {c.BOLD}{c.BLUE}note{c.RESET}: {first}')
            for note_line in rest:
                lines.append(f'          {note_line}')

        if self.help_text:
            lines.append('')
            lines.append(f'   {c.BLUE}={c.RESET} {c.BOLD}{c.GREEN}help{c.RESET}:')
            for help_line in self.help_text.split('\n'):
                lines.append(f'        {help_line}')

        return '\n'.join(lines)

    def __str__(self) -> str:
        """Plain text (no ANSI colors), safe for logs and storage."""
        return self.format_rust_style(use_colors=False)


_original_excepthook = sys.excepthook


def _runweaver_excepthook(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: Any,
) -> None:
    """Print RunweaverError instances Rust-style, defer everything else."""
    if _env_flag('RUNWEAVER_PLAIN_ERRORS') or not isinstance(exc_value, RunweaverError):
        _original_excepthook(exc_type, exc_value, exc_tb)
        return

    print(exc_value.format_rust_style(), file=sys.stderr)
    if _env_flag('RUNWEAVER_VERBOSE'):
        print('\nFull traceback (RUNWEAVER_VERBOSE=1):', file=sys.stderr)
        traceback.print_exception(exc_type, exc_value, exc_tb, file=sys.stderr)


def install_error_handler() -> None:
    """Install the custom exception hook for Rust-style error display."""
    sys.excepthook = _runweaver_excepthook


def uninstall_error_handler() -> None:
    """Restore the original exception hook."""
    sys.excepthook = _original_excepthook


# =============================================================================
# Specific Error Classes
# =============================================================================


@dataclass
class DefinitionValidationError(RunweaverError):
    """Raised when a workflow definition cannot be run as given."""

    pass


@dataclass
class NoStartingNodesError(DefinitionValidationError):
    """Every node has an incoming connection, so nothing can start."""

    pass


@dataclass
class DanglingConnectionError(DefinitionValidationError):
    """A connection references a node that is not in the definition."""

    pass


@dataclass
class DefinitionNotFoundError(RunweaverError):
    pass


@dataclass
class RunNotFoundError(RunweaverError):
    pass


@dataclass
class TaskRunNotFoundError(RunweaverError):
    pass


@dataclass
class DuplicateTaskRunError(RunweaverError):
    """A second task run was created for the same (run, node) pair."""

    pass


@dataclass
class InvalidTransitionError(RunweaverError):
    pass


@dataclass
class ConfigurationError(RunweaverError):
    """Raised when orchestrator/database configuration is invalid."""

    pass


@dataclass
class RunLockError(RunweaverError):
    """Base class for run lock acquisition failures.

    Fatal to the triggering call. Orchestrator operations are idempotent,
    so callers retry the whole operation.
    """

    run_id: str | None = None


@dataclass
class LockTimeoutError(RunLockError):
    pass


@dataclass
class LockReentryError(RunLockError):
    """The current task already holds this run's lock."""

    pass


@dataclass
class LockNotHeldError(RunLockError):
    """An operation that needs the run's lock was called without it."""

    pass


# =============================================================================
# Phase-Gated Error Collection
# =============================================================================


class ValidationReport:
    """Collects multiple RunweaverError instances within a validation phase."""

    def __init__(self, phase_name: str) -> None:
        self.phase_name: str = phase_name
        self.errors: list[RunweaverError] = []

    def add(self, error: RunweaverError) -> None:
        self.errors.append(error)

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        if use_colors is None:
            use_colors = _should_use_colors()

        c = _Colors if use_colors else _NoColors
        parts = [error.format_rust_style(use_colors=use_colors) for error in self.errors]
        parts.append(
            f'\n{c.BOLD}{c.RED}error{c.RESET}: aborting due to '
            f'{len(self.errors)} previous errors ({self.phase_name})'
        )
        return '\n'.join(parts)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


@dataclass
class MultipleValidationErrors(RunweaverError):
    """Wraps a ValidationReport containing 2+ errors."""

    report: ValidationReport = field(default_factory=lambda: ValidationReport(''))

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f'aborting due to {len(self.report.errors)} previous errors'
        # Location is per-error in the report
        super(RunweaverError, self).__init__(self.message)

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        return self.report.format_rust_style(use_colors=use_colors)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


def raise_collected(report: ValidationReport) -> None:
    """Raise collected errors.

    - 0 errors: no-op
    - 1 error: raises the original error (preserves except clauses)
    - 2+ errors: raises MultipleValidationErrors wrapping the report
    """
    count = len(report.errors)
    if count == 0:
        return
    if count == 1:
        raise report.errors[0]
    raise MultipleValidationErrors(
        message=f'aborting due to {count} previous errors',
        report=report,
    )


def _find_user_frame() -> Any | None:
    """Find the first frame outside of runweaver internals."""
    frame = inspect.currentframe()
    while frame is not None:
        filename = frame.f_code.co_filename
        if (
            not filename.startswith('<')
            and not filename.startswith(_RUNWEAVER_PKG_DIR)
            and '/site-packages/' not in filename
        ):
            return frame
        frame = frame.f_back
    return None
