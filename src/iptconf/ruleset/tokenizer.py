"""Rule line tokenizer.

Splits one iptables-save rule line (counters already stripped) into
ordered option tokens:

    -A INPUT ! -s 10.0.0.0/8 -p tcp -m tcp --dport 22 -j ACCEPT

becomes chain ``INPUT``, modules ``["tcp"]`` and the tokens
``!s=10.0.0.0/8``, ``p=tcp``, ``dport=22``, ``j=ACCEPT``.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from iptconf.core.exceptions import ParseError


NEGATION = "!"
CHAIN_OPTION = "A"
MODULE_OPTION = "m"

# A word is a run of plain characters and double-quoted strings
_WORD_RE = re.compile(r'(?:"(?:\\.|[^"\\])*"|[^\s"])+')
_OPTION_RE = re.compile(r"^--?([A-Za-z][^\s]*)?$")


@dataclass(frozen=True)
class Token:
    """One option of a rule line."""
    name: str
    value: str = ""
    negated: bool = False

    @property
    def key(self) -> str:
        """Map key for the option; negated options carry a leading '!'."""
        return f"{NEGATION}{self.name}" if self.negated else self.name


@dataclass
class TokenizedRule:
    """Result of tokenizing a rule line.

    ``chain`` is None when the line has no -A option.
    """
    chain: Optional[str] = None
    tokens: list[Token] = field(default_factory=list)
    modules: list[str] = field(default_factory=list)

    @property
    def module_string(self) -> str:
        return ",".join(self.modules)


def split_words(line: str) -> list[str]:
    """Split a line into whitespace-separated words, keeping quoted strings whole.

    Raises:
        ParseError: On an unterminated double quote
    """
    words = []
    pos = 0
    length = len(line)
    while pos < length:
        if line[pos].isspace():
            pos += 1
            continue
        match = _WORD_RE.match(line, pos)
        if match is None:
            raise ParseError(
                "Unterminated quoted string",
                details=[f"At column {pos + 1}: {line[pos:pos + 40]}"],
            )
        words.append(match.group(0))
        pos = match.end()
    return words


def is_option(word: str) -> bool:
    """Check if a word starts an option (-x or --name).

    Negative numbers are values, not options.
    """
    return bool(_OPTION_RE.match(word))


def tokenize_rule(line: str) -> TokenizedRule:
    """Tokenize a single rule line.

    Args:
        line: Rule text without a leading [packets:bytes] pair

    Returns:
        TokenizedRule with the routing chain, the options in order
        and the aggregated match modules

    Raises:
        ParseError: If the line is not valid rule syntax
    """
    words = split_words(line)
    if not words:
        raise ParseError("Empty rule line")

    chain: Optional[str] = None
    tokens: list[Token] = []
    modules: list[str] = []

    name: Optional[str] = None
    negated = False
    values: list[str] = []
    pending_negation = False

    def flush() -> None:
        nonlocal chain
        if name is None:
            return
        value = " ".join(values)
        if name == CHAIN_OPTION:
            if negated:
                raise ParseError("The -A option cannot be negated")
            if not value or len(values) != 1:
                raise ParseError("-A must be followed by exactly one chain name")
            if chain is not None:
                raise ParseError("-A given more than once")
            chain = value
        elif name == MODULE_OPTION:
            if negated:
                raise ParseError("The -m option cannot be negated")
            if not value:
                raise ParseError("-m must be followed by a module name")
            modules.append(value)
        else:
            tokens.append(Token(name=name, value=value, negated=negated))

    for i, word in enumerate(words):
        if word == NEGATION:
            following = words[i + 1] if i + 1 < len(words) else None
            if following is None:
                raise ParseError("'!' must be followed by an option")
            if is_option(following):
                pending_negation = True
                continue
            # Old-style negation inside a value: --dport ! 22
            if name is None:
                raise ParseError(f"Value '{word}' appears before any option")
            values.append(word)
            continue

        if is_option(word):
            flush()
            stripped = word.lstrip("-")
            if not stripped:
                raise ParseError(f"Option without a name: '{word}'")
            name = stripped
            negated = pending_negation
            pending_negation = False
            values = []
            continue

        if name is None:
            raise ParseError(f"Value '{word}' appears before any option")
        values.append(word)

    flush()

    return TokenizedRule(chain=chain, tokens=tokens, modules=modules)
