"""In-memory rule-set model and mutation API.

A RuleSet is a tree of tables -> chains -> rules, built by the parser
from iptables-save text and written back by the serializer. Rules are
addressed by their zero-based position within a chain; there is no
other rule identity.

Mutations never raise for bad arguments. Each returns True on success
and False on failure, keeping the reason in ``RuleSet.last_error`` and
reporting it to the injected console at debug level.
"""

import functools
import re
from dataclasses import dataclass, field
from typing import Any, Callable, NamedTuple, Optional, Union

from iptconf.core.exceptions import ValidationError
from iptconf.core.output import Console, console as default_console
from iptconf.ruleset.tokenizer import (
    CHAIN_OPTION,
    MODULE_OPTION,
    NEGATION,
    TokenizedRule,
)


# Built-in chains per table kind
BUILTIN_CHAINS: dict[str, tuple[str, ...]] = {
    "filter": ("INPUT", "FORWARD", "OUTPUT"),
    "nat": ("PREROUTING", "OUTPUT", "POSTROUTING"),
    "mangle": ("PREROUTING", "OUTPUT", "INPUT", "FORWARD", "POSTROUTING"),
    "raw": ("PREROUTING", "OUTPUT"),
    "security": ("INPUT", "FORWARD", "OUTPUT"),
}
VALID_TABLES: tuple[str, ...] = tuple(BUILTIN_CHAINS)

POLICIES: tuple[str, ...] = ("ACCEPT", "DROP", "QUEUE", "RETURN")
DEFAULT_POLICY = "ACCEPT"

# Equivalent spellings of the jump/goto target option
JUMP_OPTIONS: tuple[str, ...] = ("j", "jump", "g", "goto")

# XT_EXTENSION_MAXNAMELEN - 1
MAX_CHAIN_NAME_LENGTH = 28

# Option name as written after the dashes
_OPTION_NAME_RE = re.compile(r"[A-Za-z]\S*")
_DIGITS_RE = re.compile(r"[0-9]+")


@dataclass
class Rule:
    """One rule: ordered options plus optional counters.

    ``options`` maps option name to value in source order. A negated
    option is stored under ``!name``. ``chain`` is the routing chain
    from ``-A`` and is kept equal to the owning chain by the RuleSet.
    """
    options: dict[str, str] = field(default_factory=dict)
    modules: list[str] = field(default_factory=list)
    chain: Optional[str] = None
    packet_counter: Optional[int] = None
    byte_counter: Optional[int] = None

    @classmethod
    def from_tokens(
        cls,
        tokenized: TokenizedRule,
        packet_counter: Optional[int] = None,
        byte_counter: Optional[int] = None,
    ) -> "Rule":
        """Build a rule from tokenizer output."""
        options: dict[str, str] = {}
        for token in tokenized.tokens:
            options[token.key] = token.value
        return cls(
            options=options,
            modules=list(tokenized.modules),
            chain=tokenized.chain,
            packet_counter=packet_counter,
            byte_counter=byte_counter,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Rule":
        """Create a rule from a flat option mapping.

        ``A`` is the routing chain, ``m`` a comma-joined module list,
        ``packet-counter`` / ``byte-counter`` the counters; every other
        key is an option, with a leading ``!`` when negated.

        Example:
            Rule.from_dict({"A": "INPUT", "s": "10.0.0.0/8", "j": "DROP"})
        """
        options: dict[str, str] = {}
        modules: list[str] = []
        chain = None
        packet_counter = byte_counter = None

        for key, value in data.items():
            if key == CHAIN_OPTION:
                chain = str(value).strip()
            elif key == MODULE_OPTION:
                modules = [m.strip() for m in str(value).split(",") if m.strip()]
            elif key == "packet-counter":
                packet_counter = _optional_counter(value)
            elif key == "byte-counter":
                byte_counter = _optional_counter(value)
            else:
                validate_option_key(key)
                options[key] = "" if value is None else str(value)

        return cls(
            options=options,
            modules=modules,
            chain=chain,
            packet_counter=packet_counter,
            byte_counter=byte_counter,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the flat mapping accepted by ``from_dict``."""
        d: dict[str, Any] = {}
        if self.chain is not None:
            d[CHAIN_OPTION] = self.chain
        if self.modules:
            d[MODULE_OPTION] = self.module_string
        d.update(self.options)
        if self.packet_counter is not None:
            d["packet-counter"] = self.packet_counter
        if self.byte_counter is not None:
            d["byte-counter"] = self.byte_counter
        return d

    @property
    def module_string(self) -> str:
        """Match modules joined with commas, in first-seen order."""
        return ",".join(self.modules)

    @property
    def has_counters(self) -> bool:
        return self.packet_counter is not None and self.byte_counter is not None

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Value of a non-negated option."""
        return self.options.get(name, default)

    def is_negated(self, name: str) -> bool:
        """Check if the option is present in negated form."""
        return f"{NEGATION}{name}" in self.options

    def iter_options(self):
        """Yield (name, value, negated) in stored order."""
        for key, value in self.options.items():
            if key.startswith(NEGATION):
                yield key[len(NEGATION):], value, True
            else:
                yield key, value, False

    def refers_to(self, chain: str) -> bool:
        """Check if the rule jumps or goes to ``chain``."""
        return any(
            self.options[name].strip() == chain
            for name in JUMP_OPTIONS
            if name in self.options
        )

    def retarget(self, old: str, new: str) -> int:
        """Point every jump/goto at ``old`` to ``new``.

        Returns:
            Number of options rewritten
        """
        changed = 0
        for name in JUMP_OPTIONS:
            if name in self.options and self.options[name].strip() == old:
                self.options[name] = new
                changed += 1
        return changed

    def copy(self) -> "Rule":
        return Rule(
            options=dict(self.options),
            modules=list(self.modules),
            chain=self.chain,
            packet_counter=self.packet_counter,
            byte_counter=self.byte_counter,
        )

    def structure(self) -> dict[str, Any]:
        """Order-sensitive plain representation for comparisons."""
        return {
            "modules": list(self.modules),
            "options": list(self.options.items()),
            "packet_counter": self.packet_counter,
            "byte_counter": self.byte_counter,
        }

    def __str__(self) -> str:
        parts = [f"-m {m}" for m in self.modules]
        for name, value, negated in self.iter_options():
            dashes = "-" if len(name) == 1 else "--"
            text = f"{dashes}{name} {value}" if value else f"{dashes}{name}"
            parts.append(f"! {text}" if negated else text)
        return " ".join(parts)


@dataclass
class Chain:
    """A named, ordered list of rules with counters.

    Only built-in chains carry a policy.
    """
    name: str
    packet_counter: int = 0
    byte_counter: int = 0
    policy: Optional[str] = None
    rules: list[Rule] = field(default_factory=list)

    def structure(self) -> dict[str, Any]:
        return {
            "policy": self.policy,
            "packet_counter": self.packet_counter,
            "byte_counter": self.byte_counter,
            "rules": [r.structure() for r in self.rules],
        }


@dataclass
class Table:
    """A top-level rule grouping (filter, nat, mangle, raw, security)."""
    name: str
    chains: dict[str, Chain] = field(default_factory=dict)

    @property
    def builtin_chains(self) -> tuple[str, ...]:
        return BUILTIN_CHAINS.get(self.name, ())

    def is_builtin(self, chain: str) -> bool:
        return chain in self.builtin_chains


class RuleReference(NamedTuple):
    """Position of a rule that jumps to some chain."""
    chain: str
    index: int


class RuleStrings:
    """Raw source lines of parsed rules, for display only.

    Lines are recorded per chain at parse time and are NOT updated when
    rules are inserted, removed, replaced or moved; after such edits the
    line at an index may describe a different rule. Call ``invalidate``
    to drop them.
    """

    def __init__(self) -> None:
        self._lines: dict[tuple[str, str], list[str]] = {}

    def record(self, table: str, chain: str, line: str) -> None:
        self._lines.setdefault((table, chain), []).append(line)

    def reset(self, table: str, chain: str) -> None:
        self._lines[(table, chain)] = []

    def get_all(self, table: str, chain: str) -> Optional[list[str]]:
        lines = self._lines.get((table, chain))
        return list(lines) if lines is not None else None

    def get(self, table: str, chain: str, index: int) -> Optional[str]:
        lines = self._lines.get((table, chain))
        if lines is None or not 0 <= index < len(lines):
            return None
        return lines[index]

    def rename(self, table: str, old: str, new: str) -> None:
        if (table, old) in self._lines:
            self._lines[(table, new)] = self._lines.pop((table, old))

    def invalidate(self, table: str, chain: Optional[str] = None) -> None:
        """Drop cached lines for one chain, or for a whole table."""
        if chain is not None:
            self._lines.pop((table, chain), None)
            return
        for key in [k for k in self._lines if k[0] == table]:
            del self._lines[key]


RuleLike = Union[Rule, dict[str, Any]]


def _optional_counter(value: Any) -> Optional[int]:
    if value is None:
        return None
    return _coerce_counter(value, "Counter")


def _coerce_counter(value: Any, what: str) -> int:
    """Validate a counter value.

    Accepts non-negative ints and strings of ASCII digits.

    Raises:
        ValidationError: If the value is not a non-negative integer
    """
    if isinstance(value, bool):
        raise ValidationError(f"{what} must be a non-negative integer, got {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _DIGITS_RE.fullmatch(value.strip()):
        number = int(value.strip())
    else:
        raise ValidationError(
            f"{what} must be a non-negative integer, got {value!r}",
        )
    if number < 0:
        raise ValidationError(f"{what} cannot be negative: {number}")
    return number


def _coerce_rule(rule: RuleLike) -> Rule:
    if isinstance(rule, Rule):
        for key in rule.options:
            validate_option_key(key)
        return rule.copy()
    if isinstance(rule, dict):
        return Rule.from_dict(rule)
    raise ValidationError(f"Rule must be a Rule or a dict, got {type(rule).__name__}")


def validate_option_key(key: Any) -> str:
    """Check that an option key can be written back as a rule word.

    Keys are option names without dashes, with a leading ``!`` when
    negated. The chain (``A``) and modules (``m``) live in their own
    fields and cannot be negated.

    Raises:
        ValidationError: If the key would not re-parse
    """
    if not isinstance(key, str):
        raise ValidationError(f"Option name must be a string, got {type(key).__name__}")
    name = key[len(NEGATION):] if key.startswith(NEGATION) else key
    if name in (CHAIN_OPTION, MODULE_OPTION):
        if name != key:
            raise ValidationError(f"The -{name} option cannot be negated")
        raise ValidationError(f"-{name} is not a plain option: '{key}'")
    if not _OPTION_NAME_RE.fullmatch(name):
        raise ValidationError(f"Invalid option name: '{key}'")
    return key

def validate_chain_name(name: Any) -> str:
    """Validate a user-defined chain name.

    Rules:
    - Non-empty, at most 28 characters
    - No whitespace
    - Must not start with '-' or '!'

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(name, str) or not name:
        raise ValidationError(
            "Chain name cannot be empty",
            hint="Provide a valid chain name",
        )
    if len(name) > MAX_CHAIN_NAME_LENGTH:
        raise ValidationError(
            f"Chain name exceeds maximum length ({len(name)} > {MAX_CHAIN_NAME_LENGTH})",
            hint=f"Use a name with {MAX_CHAIN_NAME_LENGTH} or fewer characters",
        )
    if any(c.isspace() for c in name):
        raise ValidationError(f"Chain name cannot contain whitespace: '{name}'")
    if name[0] in ("-", NEGATION):
        raise ValidationError(f"Chain name cannot start with '{name[0]}': '{name}'")
    return name


def _mutation(func: Callable[..., Any]) -> Callable[..., bool]:
    """Turn ValidationError from a mutation into a False result."""

    @functools.wraps(func)
    def wrapper(self: "RuleSet", *args: Any, **kwargs: Any) -> bool:
        try:
            func(self, *args, **kwargs)
        except ValidationError as e:
            self.last_error = e
            self.console.debug(f"{func.__name__} failed: {e.message}")
            self.console.debug(f"  arguments: {args!r} {kwargs!r}")
            return False
        self.last_error = None
        return True

    return wrapper


class RuleSet:
    """Mutable model of an iptables-save rule-set.

    Tables keep first-seen order, chains keep declaration order and
    rules keep their position. Built by ``parse_rules`` or empty.
    """

    def __init__(self, console: Optional[Console] = None) -> None:
        """Initialize an empty rule-set.

        Args:
            console: Observer for rejected mutations (default: global console)
        """
        self.tables: dict[str, Table] = {}
        self.rule_strings = RuleStrings()
        self.console = console if console is not None else default_console
        self.last_error: Optional[ValidationError] = None

    # =========================================================================
    # Lookup helpers
    # =========================================================================

    def get_table(self, table: str) -> Optional[Table]:
        return self.tables.get(table)

    def get_chain(self, table: str, chain: str) -> Optional[Chain]:
        tbl = self.tables.get(table)
        if tbl is None:
            return None
        return tbl.chains.get(chain)

    def _require_table(self, table: str) -> Table:
        tbl = self.tables.get(table)
        if tbl is None:
            raise ValidationError(
                f"Table '{table}' does not exist",
                hint=f"Known tables: {', '.join(self.tables) or 'none'}",
            )
        return tbl

    def _require_chain(self, table: str, chain: str) -> Chain:
        tbl = self._require_table(table)
        found = tbl.chains.get(chain)
        if found is None:
            raise ValidationError(f"Chain '{chain}' does not exist in table '{table}'")
        return found

    def _require_rule(self, table: str, chain: str, index: int) -> Rule:
        found = self._require_chain(table, chain)
        _require_index(index)
        if not 0 <= index < len(found.rules):
            raise ValidationError(
                f"Rule index {index} out of range for chain '{chain}' "
                f"({len(found.rules)} rules)",
            )
        return found.rules[index]

    # =========================================================================
    # Queries
    # =========================================================================

    def get_all_tables(self) -> list[str]:
        """Names of all tables, in first-seen order."""
        return list(self.tables)

    def get_table_chains(self, table: str) -> Optional[list[str]]:
        """Names of the chains of a table; None if the table does not exist."""
        tbl = self.tables.get(table)
        if tbl is None:
            return None
        return list(tbl.chains)

    def is_builtin_chain(self, table: str, chain: str) -> bool:
        """Check if ``chain`` is a built-in chain of the ``table`` kind."""
        return chain in BUILTIN_CHAINS.get(table, ())

    def get_policy(self, table: str, chain: str) -> Optional[str]:
        """Policy of a built-in chain; None for user chains or missing chains."""
        if not self.is_builtin_chain(table, chain):
            return None
        found = self.get_chain(table, chain)
        return found.policy if found else None

    def get_chain_packet_counter(self, table: str, chain: str) -> Optional[int]:
        found = self.get_chain(table, chain)
        return found.packet_counter if found else None

    def get_chain_byte_counter(self, table: str, chain: str) -> Optional[int]:
        found = self.get_chain(table, chain)
        return found.byte_counter if found else None

    def get_all_rules(self, table: str, chain: str) -> Optional[list[Rule]]:
        """Copies of all rules of a chain; None if the chain does not exist."""
        found = self.get_chain(table, chain)
        if found is None:
            return None
        return [r.copy() for r in found.rules]

    def get_rule(self, table: str, chain: str, index: int) -> Optional[Rule]:
        """Copy of the rule at ``index``.

        Unlike insert/replace, an index past the end is not treated as
        "append": it simply returns None.
        """
        found = self.get_chain(table, chain)
        if found is None or not isinstance(index, int) or isinstance(index, bool):
            return None
        if not 0 <= index < len(found.rules):
            return None
        return found.rules[index].copy()

    def get_rule_packet_counter(self, table: str, chain: str, index: int) -> Optional[int]:
        rule = self.get_rule(table, chain, index)
        return rule.packet_counter if rule else None

    def get_rule_byte_counter(self, table: str, chain: str, index: int) -> Optional[int]:
        rule = self.get_rule(table, chain, index)
        return rule.byte_counter if rule else None

    def get_all_rule_strings(self, table: str, chain: str) -> Optional[list[str]]:
        """Raw source lines of a chain's rules (may be stale after edits)."""
        return self.rule_strings.get_all(table, chain)

    def get_rule_string(self, table: str, chain: str, index: int) -> Optional[str]:
        """Raw source line at ``index`` (may be stale after edits)."""
        return self.rule_strings.get(table, chain, index)

    def invalidate_rule_strings(self, table: str, chain: Optional[str] = None) -> None:
        self.rule_strings.invalidate(table, chain)

    # =========================================================================
    # Reference tracking
    # =========================================================================

    def get_referring_rules(self, table: str, chain: str) -> Optional[list[RuleReference]]:
        """Find the rules that jump or go to a user-defined chain.

        Args:
            table: The name of the table
            chain: The chain being referred to

        Returns:
            References in reverse discovery order, so deleting by index
            while iterating keeps later indices valid. None when not
            applicable: the table does not exist or the chain is built-in.
        """
        tbl = self.tables.get(table)
        if tbl is None or tbl.is_builtin(chain):
            return None

        found: list[RuleReference] = []
        for owner in tbl.chains.values():
            for index, rule in enumerate(owner.rules):
                if rule.refers_to(chain):
                    found.append(RuleReference(owner.name, index))
        found.reverse()
        return found

    def get_reference_count(self, table: str, chain: str) -> Optional[int]:
        """Number of referring rules; None when not applicable."""
        refs = self.get_referring_rules(table, chain)
        return None if refs is None else len(refs)

    # =========================================================================
    # Chain operations
    # =========================================================================

    @_mutation
    def add_chain(
        self,
        table: str,
        name: str,
        packet_counter: Any = 0,
        byte_counter: Any = 0,
    ) -> None:
        """Add a chain to a table, creating the table if needed.

        Args:
            table: One of the recognized table kinds
            name: New chain name
            packet_counter: Initial packet counter
            byte_counter: Initial byte counter

        Returns:
            True on success; False otherwise (see ``last_error``)
        """
        if table not in VALID_TABLES:
            raise ValidationError(
                f"Unknown table: '{table}'",
                hint=f"Valid tables: {', '.join(VALID_TABLES)}",
            )
        validate_chain_name(name)
        tbl = self.tables.get(table)
        if tbl is not None and name in tbl.chains:
            raise ValidationError(f"Chain '{name}' already exists in table '{table}'")
        packets = _coerce_counter(packet_counter, "Packet counter")
        octets = _coerce_counter(byte_counter, "Byte counter")

        if tbl is None:
            tbl = Table(table)
            self.tables[table] = tbl

        policy = DEFAULT_POLICY if tbl.is_builtin(name) else None
        tbl.chains[name] = Chain(
            name=name,
            packet_counter=packets,
            byte_counter=octets,
            policy=policy,
        )

    @_mutation
    def rename_chain(
        self,
        table: str,
        old_name: str,
        new_name: str,
        cascade: bool = True,
    ) -> None:
        """Rename a user-defined chain.

        Args:
            table: The name of the table
            old_name: Current chain name
            new_name: New chain name
            cascade: Also rewrite jump/goto targets that name the chain

        Returns:
            True on success; False otherwise (see ``last_error``)
        """
        tbl = self._require_table(table)
        if tbl.is_builtin(old_name):
            raise ValidationError(f"Cannot rename built-in chain '{old_name}'")
        chain = tbl.chains.get(old_name)
        if chain is None:
            raise ValidationError(f"Chain '{old_name}' does not exist in table '{table}'")
        if old_name == new_name:
            return
        validate_chain_name(new_name)
        if new_name in tbl.chains:
            raise ValidationError(f"Chain '{new_name}' already exists in table '{table}'")
        if tbl.is_builtin(new_name):
            raise ValidationError(f"Cannot rename a chain to built-in name '{new_name}'")

        if cascade:
            for ref in self.get_referring_rules(table, old_name) or []:
                tbl.chains[ref.chain].rules[ref.index].retarget(old_name, new_name)

        # Rebuild the mapping so the chain keeps its position
        tbl.chains = {
            (new_name if key == old_name else key): value
            for key, value in tbl.chains.items()
        }
        chain.name = new_name
        for rule in chain.rules:
            rule.chain = new_name
        self.rule_strings.rename(table, old_name, new_name)

    @_mutation
    def remove_chain(self, table: str, name: str) -> None:
        """Remove a user-defined chain.

        A chain still referenced by jump/goto rules cannot be removed;
        delete the referring rules first (see ``get_referring_rules``).
        """
        tbl = self._require_table(table)
        if tbl.is_builtin(name):
            raise ValidationError(f"Cannot remove built-in chain '{name}'")
        if name not in tbl.chains:
            raise ValidationError(f"Chain '{name}' does not exist in table '{table}'")
        refs = self.get_referring_rules(table, name)
        if refs is None or len(refs) != 0:
            raise ValidationError(
                f"Chain '{name}' is referenced by {len(refs or [])} rule(s)",
                hint="Remove the referring rules first",
                details=[f"{ref.chain}[{ref.index}]" for ref in refs or []],
            )
        del tbl.chains[name]
        self.rule_strings.invalidate(table, name)

    @_mutation
    def flush_chain(self, table: str, name: str) -> None:
        """Delete every rule of a chain.

        Flushing a chain that has no rules is a failure, so flushing
        twice in a row fails the second time.
        """
        chain = self._require_chain(table, name)
        if not chain.rules:
            raise ValidationError(f"Chain '{name}' has no rules to flush")
        chain.rules = []

    @_mutation
    def set_policy(self, table: str, chain: str, policy: str) -> None:
        """Set the policy of a built-in chain (ACCEPT, DROP, QUEUE, RETURN)."""
        found = self._require_chain(table, chain)
        if not self.is_builtin_chain(table, chain):
            raise ValidationError(f"Only built-in chains have a policy: '{chain}'")
        if policy not in POLICIES:
            raise ValidationError(
                f"Invalid policy: '{policy}'",
                hint=f"Valid policies: {', '.join(POLICIES)}",
            )
        found.policy = policy

    @_mutation
    def set_chain_packet_counter(self, table: str, chain: str, count: Any) -> None:
        found = self._require_chain(table, chain)
        found.packet_counter = _coerce_counter(count, "Packet counter")

    @_mutation
    def set_chain_byte_counter(self, table: str, chain: str, count: Any) -> None:
        found = self._require_chain(table, chain)
        found.byte_counter = _coerce_counter(count, "Byte counter")

    @_mutation
    def zero_chain_counters(self, table: str, chain: str) -> None:
        found = self._require_chain(table, chain)
        found.packet_counter = 0
        found.byte_counter = 0

    # =========================================================================
    # Rule operations
    # =========================================================================

    @_mutation
    def insert_rule(self, table: str, chain: str, index: int, rule: RuleLike) -> None:
        """Insert a rule at ``index``, shifting later rules right.

        An index past the end appends. Negative indexes are rejected.

        Args:
            table: The name of the table
            chain: The name of the chain
            index: Zero-based position of the new rule
            rule: Rule object or flat option mapping

        Returns:
            True on success; False otherwise (see ``last_error``)
        """
        found = self._require_chain(table, chain)
        _require_index(index)
        new_rule = _coerce_rule(rule)
        new_rule.chain = chain
        if index >= len(found.rules):
            found.rules.append(new_rule)
        else:
            found.rules.insert(index, new_rule)

    @_mutation
    def append_rule(self, table: str, chain: str, rule: RuleLike) -> None:
        """Append a rule at the end of a chain."""
        found = self._require_chain(table, chain)
        new_rule = _coerce_rule(rule)
        new_rule.chain = chain
        found.rules.append(new_rule)

    @_mutation
    def remove_rule(self, table: str, chain: str, index: int) -> None:
        """Delete the rule at ``index``; later rules shift left."""
        self._require_rule(table, chain, index)
        del self.tables[table].chains[chain].rules[index]

    @_mutation
    def replace_rule(self, table: str, chain: str, index: int, rule: RuleLike) -> None:
        """Replace the rule at ``index``.

        An index past the end appends instead. Only a missing chain or a
        negative index fails.
        """
        found = self._require_chain(table, chain)
        _require_index(index)
        new_rule = _coerce_rule(rule)
        new_rule.chain = chain
        if index < len(found.rules):
            found.rules[index] = new_rule
        else:
            found.rules.append(new_rule)

    @_mutation
    def change_rule_index(self, table: str, chain: str, old_index: int, new_index: int) -> None:
        """Move a rule to a new position.

        The rule is removed first and then inserted at ``new_index`` in
        the shortened chain; an index past the end appends.
        """
        found = self._require_chain(table, chain)
        self._require_rule(table, chain, old_index)
        _require_index(new_index)
        if old_index == new_index:
            raise ValidationError(f"Rule is already at index {old_index}")

        moved = found.rules.pop(old_index)
        if new_index >= len(found.rules):
            found.rules.append(moved)
        else:
            found.rules.insert(new_index, moved)

    @_mutation
    def set_rule_packet_counter(self, table: str, chain: str, index: int, count: Any) -> None:
        rule = self._require_rule(table, chain, index)
        rule.packet_counter = _coerce_counter(count, "Packet counter")

    @_mutation
    def set_rule_byte_counter(self, table: str, chain: str, index: int, count: Any) -> None:
        rule = self._require_rule(table, chain, index)
        rule.byte_counter = _coerce_counter(count, "Byte counter")

    @_mutation
    def zero_rule_counters(self, table: str, chain: str, index: int) -> None:
        rule = self._require_rule(table, chain, index)
        rule.packet_counter = 0
        rule.byte_counter = 0

    # =========================================================================
    # Comparison
    # =========================================================================

    def structure(self) -> list[tuple[str, list[tuple[str, dict[str, Any]]]]]:
        """Order-sensitive plain representation of the whole tree.

        Two rule-sets with equal structure serialize to the same text.
        """
        return [
            (name, [(chain.name, chain.structure()) for chain in tbl.chains.values()])
            for name, tbl in self.tables.items()
        ]


def _require_index(index: Any) -> None:
    if isinstance(index, bool) or not isinstance(index, int):
        raise ValidationError(f"Rule index must be an integer, got {index!r}")
    if index < 0:
        raise ValidationError(f"Rule index cannot be negative: {index}")
