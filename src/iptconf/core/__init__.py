"""Core framework components for iptconf."""

from iptconf.core.exceptions import (
    IptconfError,
    ConfigurationError,
    ValidationError,
    CollaboratorError,
    ParseError,
    DuplicateTableError,
    MissingCommitError,
    CounterFormatError,
)

from iptconf.core.context import ExecutionContext, create_context
from iptconf.core.output import console, Console, Verbosity
from iptconf.core.config import AppConfig, RulesConfig
from iptconf.core.executor import CommandExecutor, CommandResult

__all__ = [
    # Exceptions
    "IptconfError",
    "ConfigurationError",
    "ValidationError",
    "CollaboratorError",
    "ParseError",
    "DuplicateTableError",
    "MissingCommitError",
    "CounterFormatError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "RulesConfig",
    # Executor
    "CommandExecutor",
    "CommandResult",
]
