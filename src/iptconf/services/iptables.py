"""Rules store for iptables-save / iptables-restore text.

Provides:
- Loading a RuleSet from a rules file or the live kernel tables
- Atomic commit of a RuleSet back to a rules file
- Applying a RuleSet through iptables-restore
- IPv4 and IPv6 (ip6tables-*) support
- Dry-run mode support
"""

from pathlib import Path
from typing import Optional

from iptconf.core.config import RulesConfig
from iptconf.core.context import ExecutionContext
from iptconf.core.exceptions import CollaboratorError
from iptconf.core.executor import CommandExecutor
from iptconf.ruleset.model import RuleSet
from iptconf.ruleset.parser import parse_rules
from iptconf.ruleset.serializer import serialize


# Seconds to wait for iptables-save / iptables-restore
COMMAND_TIMEOUT = 60


class IptablesStore:
    """Where rule-sets come from and where they go.

    With ``rules_file`` configured the store works on that file. Without
    it, rules are read from the save executable and written through the
    restore executable.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        config: Optional[RulesConfig] = None,
    ) -> None:
        """Initialize the store.

        Args:
            ctx: Execution context
            executor: Command executor
            config: Effective settings (default: ``ctx.rules_config``)
        """
        self.ctx = ctx
        self.executor = executor
        self.config = config if config is not None else ctx.rules_config

    @property
    def rules_file(self) -> Optional[Path]:
        return self.config.rules_file

    @property
    def source(self) -> str:
        """Human-readable description of where rules are loaded from."""
        if self.rules_file is not None:
            return str(self.rules_file)
        return str(self.config.save_command)

    def read_text(self) -> str:
        """Read raw iptables-save text.

        A missing rules file is created empty.

        Raises:
            CollaboratorError: If the file or the save executable fails
        """
        if self.rules_file is not None:
            self.ctx.console.verbose(f"Reading rules from {self.rules_file}")
            return self.executor.read_file(self.rules_file, create=True)

        result = self.executor.run(
            [str(self.config.save_command), "-c"],
            elevate=True,
            timeout=COMMAND_TIMEOUT,
            mutating=False,
        )
        if not result.stdout.strip():
            self.ctx.console.warn(f"{self.config.save_command.name} returned no tables")
        return result.stdout

    def load(self) -> RuleSet:
        """Load and parse the current rule-set.

        Raises:
            CollaboratorError: If the rules cannot be read
            ParseError: If the text is not valid iptables-save output
        """
        text = self.read_text()
        ruleset = parse_rules(text, console=self.ctx.console)
        self.ctx.console.debug(
            f"Loaded {len(ruleset.tables)} table(s) from {self.source}"
        )
        return ruleset

    def commit(self, ruleset: RuleSet, path: Optional[Path] = None) -> Path:
        """Serialize the rule-set and write it atomically.

        Args:
            ruleset: Rule-set to write
            path: Destination (default: the configured rules file)

        Returns:
            The path written

        Raises:
            CollaboratorError: If there is no destination or the write fails
        """
        target = path or self.rules_file
        if target is None:
            raise CollaboratorError(
                "No rules file to commit to",
                hint="Set rules_file in the configuration or pass --file",
            )

        self.executor.write_file(
            target,
            serialize(ruleset),
            description=f"Writing rules to {target}",
        )
        if not self.ctx.dry_run:
            self.ctx.console.success(f"Rules saved to {target}")
        return target

    def apply(self, ruleset: RuleSet, restore_counters: Optional[bool] = None) -> None:
        """Load the rule-set into the kernel through the restore executable.

        Args:
            ruleset: Rule-set to apply
            restore_counters: Pass -c (default: the ``restore_counters`` setting)

        Raises:
            CollaboratorError: If the restore executable fails
        """
        if restore_counters is None:
            restore_counters = self.config.restore_counters

        command = [str(self.config.restore_command)]
        if restore_counters:
            command.append("-c")

        text = serialize(ruleset)
        if self.ctx.dry_run and self.ctx.is_verbose:
            self.ctx.console.rules_text(text, title="Rules to apply")

        self.executor.run(
            command,
            description=f"Applying rules with {self.config.restore_command.name}",
            elevate=True,
            input_text=text,
            timeout=COMMAND_TIMEOUT,
        )
        if not self.ctx.dry_run:
            self.ctx.console.success("Rules applied")
