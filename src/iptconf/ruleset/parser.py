"""iptables-save format parser.

Drives a two-state machine over the input, one line at a time:

    OUTSIDE_TABLE --*name--> INSIDE_TABLE --COMMIT--> OUTSIDE_TABLE

Inside a table, ``:chain policy [p:b]`` lines declare chains and every
other line is a rule. Any error aborts the whole parse; there is no
partial result.
"""

import re
from enum import Enum
from typing import Optional

from iptconf.core.exceptions import (
    CounterFormatError,
    DuplicateTableError,
    MissingCommitError,
    ParseError,
)
from iptconf.core.output import Console
from iptconf.ruleset.model import VALID_TABLES, Chain, Rule, RuleSet, Table
from iptconf.ruleset.tokenizer import tokenize_rule


COMMIT = "COMMIT"
COMMENT_PREFIX = "#"

_TABLE_RE = re.compile(r"^\*(\w+)$")
_COUNTERS_RE = re.compile(r"^\[(\d+):(\d+)\]$")
_RULE_COUNTERS_RE = re.compile(r"^\[(\d+):(\d+)\](?:\s+|$)")


class ParserState(str, Enum):
    """Where the parser is relative to table blocks."""
    OUTSIDE_TABLE = "outside-table"
    INSIDE_TABLE = "inside-table"


def parse_counters(text: str) -> Optional[tuple[int, int]]:
    """Parse a ``[packets:bytes]`` pair.

    Returns:
        (packets, bytes), or None if the text is not a counter pair
    """
    match = _COUNTERS_RE.match(text.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


class SaveFormatParser:
    """Builds a RuleSet from iptables-save text."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console
        self.state = ParserState.OUTSIDE_TABLE
        self.ruleset = RuleSet(console=console)
        self.table: Optional[Table] = None
        self.line_number = 0

    def parse(self, text: str) -> RuleSet:
        """Parse the complete text.

        Args:
            text: iptables-save output

        Returns:
            The populated RuleSet (empty for empty input)

        Raises:
            ParseError: On any malformed line, with its line number
            DuplicateTableError: If a table appears twice
            MissingCommitError: If a table is not closed by COMMIT
            CounterFormatError: On missing or malformed counters
        """
        for number, raw in enumerate(text.splitlines(), start=1):
            self.line_number = number
            self._handle_line(raw)

        if self.state is ParserState.INSIDE_TABLE:
            raise MissingCommitError(
                f"COMMIT expected at end of input for table '{self.table.name}'",
                line_number=self.line_number,
            )

        if self.console is not None:
            self.console.debug(
                f"Parsed {len(self.ruleset.tables)} table(s): "
                f"{', '.join(self.ruleset.tables) or 'none'}"
            )
        return self.ruleset

    def _handle_line(self, raw: str) -> None:
        line = raw.strip()

        if not line or line.startswith(COMMENT_PREFIX):
            return

        if line.startswith("*"):
            self._open_table(line)
        elif self.state is ParserState.OUTSIDE_TABLE:
            raise ParseError(
                "Unexpected line outside of a table block",
                line_number=self.line_number,
                line=line,
                hint="Rules and chain declarations must follow a *table line",
            )
        elif line == COMMIT:
            self.state = ParserState.OUTSIDE_TABLE
            self.table = None
        elif line.startswith(":"):
            self._declare_chain(line)
        else:
            self._add_rule(line)

    def _open_table(self, line: str) -> None:
        if self.state is ParserState.INSIDE_TABLE:
            raise MissingCommitError(
                f"COMMIT expected before new table (table '{self.table.name}' is still open)",
                line_number=self.line_number,
                line=line,
            )

        match = _TABLE_RE.match(line)
        if not match:
            raise ParseError(
                "Invalid table definition",
                line_number=self.line_number,
                line=line,
            )
        name = match.group(1)
        if name in self.ruleset.tables:
            raise DuplicateTableError(
                f"Table '{name}' already defined",
                line_number=self.line_number,
                line=line,
            )
        if name not in VALID_TABLES:
            raise ParseError(
                f"Unknown table '{name}'",
                line_number=self.line_number,
                line=line,
                hint=f"Valid tables: {', '.join(VALID_TABLES)}",
            )

        self.table = Table(name)
        self.ruleset.tables[name] = self.table
        self.state = ParserState.INSIDE_TABLE

    def _declare_chain(self, line: str) -> None:
        parts = line[1:].split()
        if not parts:
            raise ParseError(
                "Invalid chain definition",
                line_number=self.line_number,
                line=line,
            )
        name = parts[0]
        if len(parts) < 2:
            raise ParseError(
                f"Policy not specified for chain '{name}'",
                line_number=self.line_number,
                line=line,
            )
        policy = parts[1]
        counters = parse_counters(parts[2]) if len(parts) > 2 else None
        if counters is None:
            raise CounterFormatError(
                f"Counters missing or malformed for chain '{name}'",
                line_number=self.line_number,
                line=line,
                hint="Expected ':CHAIN POLICY [packets:bytes]'",
            )
        if len(parts) > 3:
            raise ParseError(
                f"Unexpected text after counters of chain '{name}'",
                line_number=self.line_number,
                line=line,
            )

        # Only built-in chains keep their policy; user chains carry '-'
        self.table.chains[name] = Chain(
            name=name,
            packet_counter=counters[0],
            byte_counter=counters[1],
            policy=policy if self.table.is_builtin(name) else None,
        )
        self.ruleset.rule_strings.reset(self.table.name, name)

    def _add_rule(self, line: str) -> None:
        packet_counter = byte_counter = None
        body = line
        if line.startswith("["):
            match = _RULE_COUNTERS_RE.match(line)
            if not match:
                raise CounterFormatError(
                    "Bad rule counters definition",
                    line_number=self.line_number,
                    line=line,
                    hint="Expected '[packets:bytes] -A CHAIN ...'",
                )
            packet_counter = int(match.group(1))
            byte_counter = int(match.group(2))
            body = line[match.end():]

        try:
            tokenized = tokenize_rule(body)
        except ParseError as e:
            raise type(e)(
                e.reason,
                line_number=self.line_number,
                line=line,
                hint=e.hint,
                details=list(e.details),
            ) from e

        if tokenized.chain is None:
            raise ParseError(
                "Rule does not name its chain",
                line_number=self.line_number,
                line=line,
                hint="Rule lines must contain -A <chain>",
            )

        chain = self.table.chains.get(tokenized.chain)
        if chain is None:
            raise ParseError(
                f"Rule for undeclared chain '{tokenized.chain}' in table '{self.table.name}'",
                line_number=self.line_number,
                line=line,
                hint=f"Declare it first with ':{tokenized.chain} - [0:0]'",
            )

        chain.rules.append(Rule.from_tokens(tokenized, packet_counter, byte_counter))
        self.ruleset.rule_strings.record(self.table.name, chain.name, line)


def parse_rules(text: str, console: Optional[Console] = None) -> RuleSet:
    """Parse iptables-save text into a RuleSet.

    Args:
        text: iptables-save output
        console: Observer handed to the resulting RuleSet

    Returns:
        The populated RuleSet
    """
    return SaveFormatParser(console=console).parse(text)
