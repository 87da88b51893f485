"""iptables-save rule-set model, parser and serializer."""

from iptconf.ruleset.tokenizer import Token, TokenizedRule, tokenize_rule
from iptconf.ruleset.model import (
    BUILTIN_CHAINS,
    JUMP_OPTIONS,
    POLICIES,
    VALID_TABLES,
    Chain,
    Rule,
    RuleReference,
    RuleSet,
    Table,
)
from iptconf.ruleset.parser import SaveFormatParser, parse_rules
from iptconf.ruleset.serializer import serialize

__all__ = [
    # Tokenizer
    "Token",
    "TokenizedRule",
    "tokenize_rule",
    # Model
    "BUILTIN_CHAINS",
    "JUMP_OPTIONS",
    "POLICIES",
    "VALID_TABLES",
    "Chain",
    "Rule",
    "RuleReference",
    "RuleSet",
    "Table",
    # Parser / serializer
    "SaveFormatParser",
    "parse_rules",
    "serialize",
]
