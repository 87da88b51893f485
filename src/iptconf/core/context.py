"""Per-invocation state shared by the CLI, the executor and the store.

The context carries the runtime flags of one invocation (dry-run,
verbosity, color) and the settings that decide where rules come from.
Command-line overrides such as ``--file`` and ``--ipv6`` are applied
here, on top of the configuration file and the environment.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from iptconf.core.config import AppConfig, DEFAULT_CONFIG_PATH, RulesConfig
from iptconf.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Execution context passed to the executor, the store and the CLI.

    Attributes:
        dry_run: Read rules but never write a file or run iptables-restore
        verbosity: Output verbosity level (0-3)
        no_color: Disable colored output
        config_path: Path to configuration file
        rules_file: Rules file given on the command line
        ipv6: Force ip6tables-save / ip6tables-restore
    """

    dry_run: bool = False
    verbosity: int = Verbosity.NORMAL
    no_color: bool = False
    config_path: Path = DEFAULT_CONFIG_PATH

    # Command-line overrides, applied over file and environment
    rules_file: Optional[Path] = None
    ipv6: bool = False

    _config: Optional[AppConfig] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
        )

    @property
    def config(self) -> AppConfig:
        """Configuration file plus environment (lazy loaded)."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def rules_config(self) -> RulesConfig:
        """Effective settings with the command-line overrides applied."""
        updates: dict[str, object] = {}
        if self.rules_file is not None:
            updates["rules_file"] = self.rules_file
        if self.ipv6:
            updates["ip_version"] = 6
        return self.config.config.model_copy(update=updates)

    @property
    def console(self) -> Console:
        return self._console

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE


def create_context(
    dry_run: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
    rules_file: Optional[Path] = None,
    ipv6: bool = False,
) -> ExecutionContext:
    """Create an execution context from CLI options.

    Args:
        dry_run: Preview changes without writing
        verbose: Number of -v flags
        quiet: Only show errors
        no_color: Disable colored output
        config: Path to configuration file
        rules_file: Rules file overriding the configured one
        ipv6: Use the IPv6 executables

    Returns:
        Configured execution context
    """
    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)

    return ExecutionContext(
        dry_run=dry_run,
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
        rules_file=rules_file,
        ipv6=ipv6,
    )
