"""Error taxonomy and process exit codes.

Pre-execution errors (``ConfigError``, ``ResolutionError``) are raised and
abort the whole build. Execution-phase errors are never raised out of the
scheduler; they are recorded per node and surfaced through the build report.
"""

from __future__ import annotations

# Exit status conventions shared by the engine and the CLI.
EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_CONFIG_ERROR = 3
EXIT_CANCELLED = 130


class IceforgeError(RuntimeError):
    """Base class for every error the engine raises or records."""

    exit_code: int = EXIT_BUILD_FAILED


class ConfigError(IceforgeError):
    """Raised when the manifest fails validation.

    Carries every violation found, not only the first one.
    """

    exit_code = EXIT_CONFIG_ERROR

    def __init__(self, violations: list[str] | str) -> None:
        if isinstance(violations, str):
            violations = [violations]
        self.violations: list[str] = list(violations)
        count = len(self.violations)
        header = f"Manifest has {count} problem{'s' if count != 1 else ''}:"
        super().__init__("\n".join([header, *(f"  - {v}" for v in self.violations)]))


class ResolutionError(IceforgeError):
    """Raised for unresolvable references, dependency cycles and ambiguous
    sub-component addressing."""

    exit_code = EXIT_CONFIG_ERROR

    def __init__(self, message: str, *, cycle: list[str] | None = None) -> None:
        super().__init__(message)
        self.cycle: list[str] | None = cycle


class FetchError(IceforgeError):
    """VCS checkout or package query failure."""


class ExecutionError(IceforgeError):
    """Nonzero exit from an external build command."""


class CompileError(ExecutionError):
    pass


class LinkError(ExecutionError):
    pass


class CustomRuleError(ExecutionError):
    pass


class DependencyBuildError(ExecutionError):
    pass
