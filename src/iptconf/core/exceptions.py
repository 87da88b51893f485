"""Custom exceptions for iptconf.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class IptconfError(Exception):
    """Base exception for all iptconf errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(IptconfError):
    """Configuration file or settings errors.

    Raised when:
    - Config file not found or unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(IptconfError):
    """Rule-set mutation precondition failures.

    Raised when:
    - Table or chain does not exist
    - Chain name already taken or malformed
    - Built-in chain would be renamed or removed
    - Chain is still referenced by jump/goto rules
    - Rule index out of range
    - Counter is not a non-negative integer
    """
    exit_code = 3


class CollaboratorError(IptconfError):
    """Failures at the subprocess / file boundary.

    Raised when:
    - iptables-save or iptables-restore returns non-zero
    - Executable not found or timed out
    - Rules file cannot be read or written
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


# Save-format parse errors

class ParseError(IptconfError):
    """Malformed iptables-save text.

    Parse errors are fatal: the whole parse is aborted and no partial
    rule-set is returned.
    """
    exit_code = 8

    def __init__(
        self,
        message: str,
        *,
        line_number: Optional[int] = None,
        line: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if line is not None:
            details.append(f"Line: {line}")
        self.reason = message
        if line_number is not None:
            message = f"Line {line_number}: {message}"
        super().__init__(message, hint=hint, details=details)
        self.line_number = line_number
        self.line = line


class DuplicateTableError(ParseError):
    """A table header appeared twice in the same input."""


class MissingCommitError(ParseError):
    """A table was opened but never closed with COMMIT."""


class CounterFormatError(ParseError):
    """A [packets:bytes] counter pair is missing or malformed."""
