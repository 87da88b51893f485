"""Unit tests for the iptconf CLI."""

import subprocess

import pytest
from unittest.mock import patch
from typer.testing import CliRunner

from iptconf.cli import app, build_rule
from iptconf.core.exceptions import ParseError
from iptconf.ruleset.parser import parse_rules


runner = CliRunner()

RULES = """*filter
:INPUT ACCEPT [0:0]
:FORWARD ACCEPT [0:0]
:OUTPUT ACCEPT [0:0]
:LOGDROP - [0:0]
-A INPUT -i lo -j ACCEPT
-A INPUT -s 10.0.0.0/8 -j LOGDROP
-A LOGDROP -j DROP
COMMIT
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Keep IPTCONF_* variables and .env files out of the tests."""
    for name in ("IPTCONF_RULES_FILE", "IPTCONF_IP_VERSION", "IPTCONF_ELEVATION_COMMAND"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def rules_file(tmp_path):
    path = tmp_path / "rules.v4"
    path.write_text(RULES)
    return path


def invoke(tmp_path, *args, rules=None):
    """Run the CLI with an isolated config and optional rules file."""
    options = ["--config", str(tmp_path / "config.yaml")]
    if rules is not None:
        options += ["--file", str(rules)]
    return runner.invoke(app, options + list(args))


def reload(path):
    return parse_rules(path.read_text())


class TestBuildRule:
    """Tests for build_rule."""

    def test_words(self):
        """Words are tokenized like a rule line."""
        rule = build_rule(["-p", "tcp", "--dport", "22", "-j", "ACCEPT"])
        assert rule.options == {"p": "tcp", "dport": "22", "j": "ACCEPT"}

    def test_words_with_spaces_are_quoted(self):
        """A value with spaces stays one quoted value."""
        rule = build_rule(["-m", "comment", "--comment", "allow ssh", "-j", "ACCEPT"])
        assert rule.get("comment") == '"allow ssh"'

    def test_inner_quotes_are_escaped(self):
        """Quotes and backslashes inside a spaced word stay part of one value."""
        rule = build_rule(["-m", "comment", "--comment", 'say "hi" there', "-j", "ACCEPT"])
        assert rule.get("comment") == '"say \\"hi\\" there"'
        assert rule.get("j") == "ACCEPT"

        rule = build_rule(["--comment", "a\\ b"])
        assert rule.get("comment") == '"a\\\\ b"'

    def test_invalid_words(self):
        """Bad rule syntax raises ParseError."""
        with pytest.raises(ParseError):
            build_rule(["ACCEPT"])


class TestGlobal:
    """Tests for global options."""

    def test_version(self):
        """--version prints the version."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "iptconf version" in result.output

    def test_no_args_shows_help(self):
        """Running without a command shows usage."""
        result = runner.invoke(app, [])
        assert "Usage" in result.output


class TestQueryCommands:
    """Tests for read-only commands."""

    def test_show_raw(self, tmp_path, rules_file):
        """show --raw prints the rule-set as iptables-save text."""
        result = invoke(tmp_path, "show", "--raw", rules=rules_file)
        assert result.exit_code == 0
        assert result.output == RULES

    def test_show(self, tmp_path, rules_file):
        """show renders the rules."""
        result = invoke(tmp_path, "show", rules=rules_file)
        assert result.exit_code == 0
        assert "LOGDROP" in result.output

    def test_tables(self, tmp_path, rules_file):
        """tables lists the tables."""
        result = invoke(tmp_path, "tables", rules=rules_file)
        assert result.exit_code == 0
        assert "filter" in result.output

    def test_chains(self, tmp_path, rules_file):
        """chains lists chains of a table."""
        result = invoke(tmp_path, "chains", "filter", rules=rules_file)
        assert result.exit_code == 0
        assert "LOGDROP" in result.output
        assert "FORWARD" in result.output

    def test_chains_missing_table(self, tmp_path, rules_file):
        """Unknown tables exit with the validation code."""
        result = invoke(tmp_path, "chains", "nat", rules=rules_file)
        assert result.exit_code == 3

    def test_rules(self, tmp_path, rules_file):
        """rules lists the rules of a chain."""
        result = invoke(tmp_path, "rules", "filter", "INPUT", rules=rules_file)
        assert result.exit_code == 0
        assert "LOGDROP" in result.output

    def test_rules_source(self, tmp_path, rules_file):
        """rules --source shows the lines as read."""
        result = invoke(tmp_path, "rules", "filter", "LOGDROP", "--source", rules=rules_file)
        assert result.exit_code == 0
        assert "DROP" in result.output

    def test_refs(self, tmp_path, rules_file):
        """refs lists rules jumping to a chain."""
        result = invoke(tmp_path, "refs", "filter", "LOGDROP", rules=rules_file)
        assert result.exit_code == 0
        assert "INPUT" in result.output

    def test_refs_builtin(self, tmp_path, rules_file):
        """refs on a built-in chain is not applicable."""
        result = invoke(tmp_path, "refs", "filter", "INPUT", rules=rules_file)
        assert result.exit_code == 3

    def test_policy_show(self, tmp_path, rules_file):
        """policy without a value prints the current one."""
        result = invoke(tmp_path, "policy", "filter", "INPUT", rules=rules_file)
        assert result.exit_code == 0
        assert "ACCEPT" in result.output

    def test_parse_error_exit_code(self, tmp_path):
        """A malformed rules file exits with the parse error code."""
        path = tmp_path / "broken.v4"
        path.write_text("*filter\n:INPUT ACCEPT [0:0]\n")
        result = invoke(tmp_path, "show", rules=path)
        assert result.exit_code == 8
        assert "COMMIT" in result.output


class TestChainCommands:
    """Tests for chain editing commands."""

    def test_add_chain(self, tmp_path, rules_file):
        """add-chain saves the new chain to the file."""
        result = invoke(tmp_path, "add-chain", "filter", "WEB", rules=rules_file)
        assert result.exit_code == 0
        assert "WEB" in reload(rules_file).get_table_chains("filter")

    def test_add_existing_chain(self, tmp_path, rules_file):
        """A failed mutation exits 3 and leaves the file alone."""
        result = invoke(tmp_path, "add-chain", "filter", "LOGDROP", rules=rules_file)
        assert result.exit_code == 3
        assert "already exists" in result.output
        assert rules_file.read_text() == RULES

    def test_rename_chain(self, tmp_path, rules_file):
        """rename-chain rewrites jump targets."""
        result = invoke(tmp_path, "rename-chain", "filter", "LOGDROP", "DROPLOG", rules=rules_file)
        assert result.exit_code == 0
        ruleset = reload(rules_file)
        assert ruleset.get_rule("filter", "INPUT", 1).get("j") == "DROPLOG"

    def test_rename_chain_no_cascade(self, tmp_path, rules_file):
        """--no-cascade leaves jump targets alone."""
        result = invoke(
            tmp_path, "rename-chain", "filter", "LOGDROP", "DROPLOG", "--no-cascade",
            rules=rules_file,
        )
        assert result.exit_code == 0
        assert reload(rules_file).get_rule("filter", "INPUT", 1).get("j") == "LOGDROP"

    def test_remove_referenced_chain(self, tmp_path, rules_file):
        """A referenced chain is not removed."""
        result = invoke(tmp_path, "remove-chain", "filter", "LOGDROP", rules=rules_file)
        assert result.exit_code == 3
        assert "referenced" in result.output

    def test_remove_chain_with_refs(self, tmp_path, rules_file):
        """--delete-refs deletes the referring rules first."""
        result = invoke(
            tmp_path, "remove-chain", "filter", "LOGDROP", "--delete-refs", rules=rules_file,
        )
        assert result.exit_code == 0
        ruleset = reload(rules_file)
        assert "LOGDROP" not in ruleset.get_table_chains("filter")
        assert len(ruleset.get_all_rules("filter", "INPUT")) == 1

    def test_flush(self, tmp_path, rules_file):
        """flush empties the chain."""
        result = invoke(tmp_path, "flush", "filter", "INPUT", rules=rules_file)
        assert result.exit_code == 0
        assert reload(rules_file).get_all_rules("filter", "INPUT") == []

    def test_set_policy(self, tmp_path, rules_file):
        """policy with a value sets it."""
        result = invoke(tmp_path, "policy", "filter", "INPUT", "drop", rules=rules_file)
        assert result.exit_code == 0
        assert reload(rules_file).get_policy("filter", "INPUT") == "DROP"

    def test_zero(self, tmp_path, rules_file):
        """zero resets chain counters, or one rule's with --rule."""
        rules_file.write_text(RULES.replace(":INPUT ACCEPT [0:0]", ":INPUT ACCEPT [9:900]"))
        assert invoke(tmp_path, "zero", "filter", "INPUT", rules=rules_file).exit_code == 0
        assert reload(rules_file).get_chain_packet_counter("filter", "INPUT") == 0

        assert invoke(tmp_path, "zero", "filter", "INPUT", "--rule", "0", rules=rules_file).exit_code == 0
        assert reload(rules_file).get_rule_packet_counter("filter", "INPUT", 0) == 0


class TestRuleCommands:
    """Tests for rule editing commands."""

    def test_append(self, tmp_path, rules_file):
        """append adds the rule at the end."""
        result = invoke(
            tmp_path, "append", "filter", "INPUT", "--", "-s", "10.0.0.0/8", "-j", "DROP",
            rules=rules_file,
        )
        assert result.exit_code == 0
        assert "-A INPUT -s 10.0.0.0/8 -j DROP\n" in rules_file.read_text()

    def test_insert(self, tmp_path, rules_file):
        """insert places the rule at the index."""
        result = invoke(
            tmp_path, "insert", "filter", "INPUT", "0", "--", "!", "-s", "10.0.0.0/8", "-j", "ACCEPT",
            rules=rules_file,
        )
        assert result.exit_code == 0
        rule = reload(rules_file).get_rule("filter", "INPUT", 0)
        assert rule.is_negated("s")

    def test_replace(self, tmp_path, rules_file):
        """replace overwrites the rule at the index."""
        result = invoke(
            tmp_path, "replace", "filter", "LOGDROP", "0", "--", "-j", "REJECT",
            rules=rules_file,
        )
        assert result.exit_code == 0
        assert reload(rules_file).get_rule("filter", "LOGDROP", 0).get("j") == "REJECT"

    def test_append_bad_syntax(self, tmp_path, rules_file):
        """Bad rule syntax exits with the parse error code."""
        result = invoke(tmp_path, "append", "filter", "INPUT", "--", "ACCEPT", rules=rules_file)
        assert result.exit_code == 8

    def test_delete(self, tmp_path, rules_file):
        """delete removes the rule at the index."""
        result = invoke(tmp_path, "delete", "filter", "INPUT", "0", rules=rules_file)
        assert result.exit_code == 0
        assert len(reload(rules_file).get_all_rules("filter", "INPUT")) == 1

    def test_delete_out_of_range(self, tmp_path, rules_file):
        """An index past the end fails."""
        result = invoke(tmp_path, "delete", "filter", "INPUT", "5", rules=rules_file)
        assert result.exit_code == 3

    def test_move(self, tmp_path, rules_file):
        """move changes the rule order."""
        result = invoke(tmp_path, "move", "filter", "INPUT", "0", "1", rules=rules_file)
        assert result.exit_code == 0
        assert reload(rules_file).get_rule("filter", "INPUT", 0).get("j") == "LOGDROP"

    def test_dry_run_leaves_file(self, tmp_path, rules_file):
        """--dry-run does not write the file."""
        result = runner.invoke(app, [
            "--config", str(tmp_path / "config.yaml"),
            "--file", str(rules_file),
            "--dry-run",
            "flush", "filter", "INPUT",
        ])
        assert result.exit_code == 0
        assert rules_file.read_text() == RULES


class TestLiveMode:
    """Tests without a rules file."""

    @patch("iptconf.core.executor.subprocess.run")
    def test_edit_applies_through_restore(self, mock_run, tmp_path):
        """Edits are loaded from save and applied with restore."""
        mock_run.return_value = subprocess.CompletedProcess([], 0, RULES, "")
        result = invoke(tmp_path, "policy", "filter", "INPUT", "DROP")
        assert result.exit_code == 0

        save_call, restore_call = mock_run.call_args_list
        assert save_call[0][0] == ["/sbin/iptables-save", "-c"]
        assert restore_call[0][0] == ["/sbin/iptables-restore", "-c"]
        assert ":INPUT DROP [0:0]" in restore_call.kwargs["input"]

    @patch("iptconf.core.executor.subprocess.run")
    def test_ipv6(self, mock_run, tmp_path):
        """--ipv6 uses ip6tables-save."""
        mock_run.return_value = subprocess.CompletedProcess([], 0, RULES, "")
        result = invoke(tmp_path, "--ipv6", "tables")
        assert result.exit_code == 0
        assert mock_run.call_args[0][0] == ["/sbin/ip6tables-save", "-c"]

    @patch("iptconf.core.executor.subprocess.run")
    def test_dry_run_skips_restore(self, mock_run, tmp_path):
        """--dry-run still reads but never restores."""
        mock_run.return_value = subprocess.CompletedProcess([], 0, RULES, "")
        result = invoke(tmp_path, "--dry-run", "flush", "filter", "INPUT")
        assert result.exit_code == 0
        assert mock_run.call_count == 1

    @patch("iptconf.core.executor.subprocess.run")
    def test_save_failure(self, mock_run, tmp_path):
        """A failing save executable exits with the collaborator code."""
        mock_run.return_value = subprocess.CompletedProcess([], 1, "", "permission denied")
        result = invoke(tmp_path, "tables")
        assert result.exit_code == 5

    def test_apply_needs_file(self, tmp_path):
        """apply without a rules file is a configuration error."""
        result = invoke(tmp_path, "apply")
        assert result.exit_code == 2

    @patch("iptconf.core.executor.subprocess.run")
    def test_apply_file(self, mock_run, tmp_path, rules_file):
        """apply pipes the file through iptables-restore."""
        mock_run.return_value = subprocess.CompletedProcess([], 0, "", "")
        result = invoke(tmp_path, "apply", "--no-counters", rules=rules_file)
        assert result.exit_code == 0
        assert mock_run.call_args[0][0] == ["/sbin/iptables-restore"]


class TestConfigCommands:
    """Tests for the config sub-commands."""

    def test_init_and_show(self, tmp_path):
        """config init writes a file that config show can display."""
        result = invoke(tmp_path, "config", "init")
        assert result.exit_code == 0
        assert (tmp_path / "config.yaml").exists()

        result = invoke(tmp_path, "config", "show")
        assert result.exit_code == 0
        assert "ip_version" in result.output

    def test_init_twice(self, tmp_path):
        """config init refuses to overwrite without --force."""
        invoke(tmp_path, "config", "init")
        assert invoke(tmp_path, "config", "init").exit_code == 2
        assert invoke(tmp_path, "config", "init", "--force").exit_code == 0

    def test_example(self, tmp_path):
        """config example prints the template."""
        result = invoke(tmp_path, "config", "example")
        assert result.exit_code == 0
        assert "restore_counters" in result.output
