"""iptables-save format serializer.

Walks a RuleSet and produces text accepted by iptables-restore and by
``parse_rules``:

    *filter
    :INPUT DROP [0:0]
    :LOGDROP - [0:0]
    [12:840] -A INPUT -m state --state ESTABLISHED -j ACCEPT
    -A INPUT ! -s 10.0.0.0/8 -j LOGDROP
    COMMIT
"""

from datetime import datetime
from typing import Optional, Union

from iptconf import __version__
from iptconf.ruleset.model import Chain, Rule, RuleSet, Table
from iptconf.ruleset.tokenizer import NEGATION


POLICY_PLACEHOLDER = "-"


def format_counters(packets: int, octets: int) -> str:
    return f"[{packets}:{octets}]"


def format_option(name: str, value: str, negated: bool = False) -> str:
    """Render one option.

    Single-character names get one dash, longer names two.
    """
    dashes = "-" if len(name) == 1 else "--"
    text = f"{dashes}{name} {value}" if value else f"{dashes}{name}"
    return f"{NEGATION} {text}" if negated else text


def format_chain_header(chain: Chain) -> str:
    policy = chain.policy or POLICY_PLACEHOLDER
    return f":{chain.name} {policy} {format_counters(chain.packet_counter, chain.byte_counter)}"


def format_rule(chain_name: str, rule: Rule) -> str:
    """Render a rule line for ``chain_name``.

    Match modules come first, in first-seen order, followed by the
    remaining options in stored order.
    """
    parts = []
    if rule.has_counters:
        parts.append(format_counters(rule.packet_counter, rule.byte_counter))
    parts.append(f"-A {chain_name}")
    parts.extend(f"-m {module}" for module in rule.modules)
    for name, value, negated in rule.iter_options():
        parts.append(format_option(name, value, negated))
    return " ".join(parts)


def format_table(table: Table) -> list[str]:
    lines = [f"*{table.name}"]
    lines.extend(format_chain_header(chain) for chain in table.chains.values())
    for chain in table.chains.values():
        lines.extend(format_rule(chain.name, rule) for rule in chain.rules)
    lines.append("COMMIT")
    return lines


def default_header(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"Generated by iptconf v{__version__} on {now:%a %b %d %H:%M:%S %Y}"


def serialize(ruleset: RuleSet, header: Union[str, bool, None] = None) -> str:
    """Serialize a RuleSet to iptables-save text.

    Args:
        ruleset: The rule-set to write
        header: Comment for the first line. None uses a generated
            header with a timestamp, False omits it.

    Returns:
        The complete text, newline-terminated
    """
    lines = []
    if header is None:
        header = default_header()
    if header:
        lines.append(f"# {header}")

    for table in ruleset.tables.values():
        lines.extend(format_table(table))

    return "\n".join(lines) + "\n" if lines else ""
