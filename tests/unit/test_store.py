"""Unit tests for the rules store."""

from pathlib import Path

import pytest
from unittest.mock import Mock

from iptconf.core.config import AppConfig, RulesConfig
from iptconf.core.context import ExecutionContext
from iptconf.core.exceptions import CollaboratorError, ParseError
from iptconf.core.executor import CommandExecutor, CommandResult
from iptconf.ruleset.parser import parse_rules
from iptconf.services.iptables import IptablesStore


RULES = """*filter
:INPUT ACCEPT [5:300]
:FORWARD ACCEPT [0:0]
:OUTPUT ACCEPT [0:0]
[2:120] -A INPUT -i lo -j ACCEPT
COMMIT
"""


@pytest.fixture
def ctx():
    return ExecutionContext(_console=Mock())


@pytest.fixture
def executor():
    executor = Mock(spec=CommandExecutor)
    executor.run.return_value = CommandResult(["iptables-save"], 0, RULES, "")
    return executor


class TestFileMode:
    """Tests with a rules file configured."""

    def test_context_file_override(self, tmp_path):
        """Without an explicit config the store follows the context overrides."""
        path = tmp_path / "rules.v6"
        ctx = ExecutionContext(
            rules_file=path,
            ipv6=True,
            _config=AppConfig(config=RulesConfig()),
            _console=Mock(),
        )
        store = IptablesStore(ctx, CommandExecutor(ctx))
        assert store.rules_file == path
        assert store.config.restore_command.name == "ip6tables-restore"

    def test_load_from_file(self, ctx, tmp_path):
        """Rules are parsed from the file."""
        path = tmp_path / "rules.v4"
        path.write_text(RULES)
        store = IptablesStore(ctx, CommandExecutor(ctx), config=RulesConfig(rules_file=path))
        ruleset = store.load()
        assert ruleset.get_all_tables() == ["filter"]
        assert ruleset.get_rule_packet_counter("filter", "INPUT", 0) == 2
        assert ruleset.console is ctx.console

    def test_load_creates_missing_file(self, ctx, tmp_path):
        """A missing rules file is created empty."""
        path = tmp_path / "rules.v4"
        store = IptablesStore(ctx, CommandExecutor(ctx), config=RulesConfig(rules_file=path))
        assert store.load().get_all_tables() == []
        assert path.exists()

    def test_load_malformed_file(self, ctx, tmp_path):
        """Parse errors propagate."""
        path = tmp_path / "rules.v4"
        path.write_text("*filter\n:INPUT ACCEPT [0:0]\n")
        store = IptablesStore(ctx, CommandExecutor(ctx), config=RulesConfig(rules_file=path))
        with pytest.raises(ParseError):
            store.load()

    def test_commit_writes_file(self, ctx, tmp_path):
        """commit serializes to the rules file."""
        path = tmp_path / "rules.v4"
        path.write_text(RULES)
        store = IptablesStore(ctx, CommandExecutor(ctx), config=RulesConfig(rules_file=path))
        ruleset = store.load()
        ruleset.set_policy("filter", "INPUT", "DROP")

        assert store.commit(ruleset) == path
        reloaded = parse_rules(path.read_text())
        assert reloaded.get_policy("filter", "INPUT") == "DROP"
        assert reloaded.structure() == ruleset.structure()

    def test_commit_to_other_path(self, ctx, tmp_path):
        """An explicit path wins over the configured file."""
        store = IptablesStore(ctx, CommandExecutor(ctx), config=RulesConfig())
        target = tmp_path / "out.v4"
        store.commit(parse_rules(RULES), path=target)
        assert target.read_text().endswith("COMMIT\n")

    def test_commit_without_destination(self, ctx):
        """Without any file commit fails."""
        store = IptablesStore(ctx, CommandExecutor(ctx), config=RulesConfig())
        with pytest.raises(CollaboratorError) as exc:
            store.commit(parse_rules(RULES))
        assert "No rules file" in exc.value.message


class TestLiveMode:
    """Tests without a rules file (iptables-save / iptables-restore)."""

    def test_load_runs_save_with_counters(self, ctx, executor):
        """The save executable is run with -c, elevated, as a read."""
        store = IptablesStore(ctx, executor, config=RulesConfig())
        ruleset = store.load()
        assert ruleset.get_chain_packet_counter("filter", "INPUT") == 5

        args, kwargs = executor.run.call_args
        assert args[0] == ["/sbin/iptables-save", "-c"]
        assert kwargs["elevate"] is True
        assert kwargs["mutating"] is False

    def test_load_ipv6(self, ctx, executor):
        """IP version 6 runs ip6tables-save."""
        store = IptablesStore(ctx, executor, config=RulesConfig(ip_version=6))
        store.read_text()
        assert executor.run.call_args[0][0][0] == "/sbin/ip6tables-save"

    def test_apply_pipes_text(self, ctx, executor):
        """apply pipes the serialized rules into iptables-restore -c."""
        store = IptablesStore(ctx, executor, config=RulesConfig())
        store.apply(parse_rules(RULES))

        args, kwargs = executor.run.call_args
        assert args[0] == ["/sbin/iptables-restore", "-c"]
        assert "[2:120] -A INPUT -i lo -j ACCEPT" in kwargs["input_text"]
        assert kwargs["elevate"] is True

    def test_apply_without_counters(self, ctx, executor):
        """Counters can be left out of the restore."""
        store = IptablesStore(ctx, executor, config=RulesConfig(restore_counters=False))
        store.apply(parse_rules(RULES))
        assert executor.run.call_args[0][0] == ["/sbin/iptables-restore"]

        store.apply(parse_rules(RULES), restore_counters=True)
        assert executor.run.call_args[0][0] == ["/sbin/iptables-restore", "-c"]

    def test_restore_failure_propagates(self, ctx, executor):
        """Errors from the executor are not swallowed."""
        executor.run.side_effect = CollaboratorError("Command failed", return_code=1)
        store = IptablesStore(ctx, executor, config=RulesConfig())
        with pytest.raises(CollaboratorError):
            store.apply(parse_rules(RULES))

    def test_source(self, ctx, executor):
        """source names the file or the save executable."""
        assert IptablesStore(ctx, executor, config=RulesConfig()).source == "/sbin/iptables-save"
        store = IptablesStore(ctx, executor, config=RulesConfig(rules_file=Path("/x/rules")))
        assert store.source == "/x/rules"
