"""Main CLI entry point using Typer.

This module defines the root CLI application, the global options and
the rule-set editing commands. Every editing command loads the current
rule-set, applies one Mutation API call and saves the result: to the
rules file when one is configured, otherwise through iptables-restore.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markup import escape

from iptconf import __version__
from iptconf.core.config import (
    DEFAULT_CONFIG_PATH,
    get_example_config,
    init_config,
)
from iptconf.core.context import ExecutionContext, create_context
from iptconf.core.exceptions import ConfigurationError, IptconfError, ValidationError
from iptconf.core.executor import CommandExecutor
from iptconf.core.output import console as app_console
from iptconf.ruleset.model import Rule, RuleSet
from iptconf.ruleset.serializer import serialize
from iptconf.ruleset.tokenizer import tokenize_rule
from iptconf.services.iptables import IptablesStore


# Create the main Typer app
app = typer.Typer(
    name="iptconf",
    help="iptconf - Structured editing of iptables-save rule-sets.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Preview changes without writing the rules file or running iptables-restore.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]

FileOption = Annotated[
    Optional[Path],
    typer.Option(
        "--file",
        "-f",
        help="Rules file to edit instead of the live iptables rules.",
        dir_okay=False,
    ),
]

IPv6Option = Annotated[
    bool,
    typer.Option(
        "--ipv6",
        "-6",
        help="Use ip6tables-save / ip6tables-restore.",
        is_flag=True,
    ),
]

TableArg = Annotated[str, typer.Argument(help="Table name (filter, nat, mangle, raw, security).")]
ChainArg = Annotated[str, typer.Argument(help="Chain name.")]
RuleArg = Annotated[
    list[str],
    typer.Argument(help="Rule options, after '--' (e.g. -- -p tcp --dport 22 -j ACCEPT)."),
]


@dataclass
class CliOptions:
    """Global options collected by the root callback."""
    config: Optional[Path] = None
    file: Optional[Path] = None
    ipv6: bool = False
    dry_run: bool = False
    verbose: int = 0
    quiet: bool = False
    no_color: bool = False


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        app_console.print(f"iptconf version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: ConfigOption = None,
    file: FileOption = None,
    ipv6: IPv6Option = False,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """iptconf - Structured editing of iptables-save rule-sets.

    Reads rules from a rules file (--file or rules_file in the
    configuration) or from iptables-save, edits them and writes them
    back.

    [bold]Examples:[/bold]
        iptconf --file rules.v4 show
        iptconf --file rules.v4 add-chain filter LOGDROP
        iptconf --file rules.v4 append filter INPUT -- -p tcp --dport 22 -j ACCEPT
        iptconf --dry-run policy filter INPUT DROP
    """
    ctx.obj = CliOptions(
        config=config,
        file=file,
        ipv6=ipv6,
        dry_run=dry_run,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
    )


def get_context(options: CliOptions) -> ExecutionContext:
    """Create execution context from the global options."""
    return create_context(
        dry_run=options.dry_run,
        verbose=options.verbose,
        quiet=options.quiet,
        no_color=options.no_color,
        config=options.config,
        rules_file=options.file,
        ipv6=options.ipv6,
    )


def get_store(typer_ctx: typer.Context) -> tuple[ExecutionContext, IptablesStore]:
    """Create the context and rules store, with CLI flags over configuration."""
    options: CliOptions = typer_ctx.obj or CliOptions()
    ctx = get_context(options)

    rules_config = ctx.rules_config
    executor = CommandExecutor(ctx, elevation=rules_config.elevation_prefix)
    return ctx, IptablesStore(ctx, executor, config=rules_config)


def handle_error(error: IptconfError) -> None:
    """Handle an IptconfError by printing formatted error and exiting."""
    app_console.error(escape(error.message))

    if error.details:
        for detail in error.details:
            app_console.print(f"  [dim]{escape(detail)}[/dim]")

    if error.hint:
        app_console.hint(escape(error.hint))

    raise typer.Exit(error.exit_code)


def check(ruleset: RuleSet, ok: bool) -> None:
    """Turn a failed mutation into an error exit."""
    if not ok:
        handle_error(ruleset.last_error or ValidationError("Operation failed"))


def save(store: IptablesStore, ruleset: RuleSet) -> None:
    """Write the edited rule-set back where it came from."""
    if store.rules_file is not None:
        store.commit(ruleset)
    else:
        store.apply(ruleset)


def build_rule(words: list[str]) -> Rule:
    """Build a rule from command-line words.

    Words containing whitespace are re-quoted, with inner quotes and
    backslashes escaped, so they stay one value.
    """
    return Rule.from_tokens(tokenize_rule(" ".join(_quote_word(w) for w in words)))


def _quote_word(word: str) -> str:
    if not any(c.isspace() for c in word):
        return word
    escaped = word.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _chain_rows(ruleset: RuleSet, table: str) -> list[list[str]]:
    rows = []
    for name in ruleset.get_table_chains(table) or []:
        chain = ruleset.get_chain(table, name)
        refs = ruleset.get_reference_count(table, name)
        rows.append([
            escape(name),
            chain.policy or "-",
            str(len(chain.rules)),
            f"{chain.packet_counter}:{chain.byte_counter}",
            "built-in" if refs is None else str(refs),
        ])
    return rows


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(typer_ctx: typer.Context) -> None:
    """Show current configuration.

    Displays the loaded configuration with environment overrides applied.
    """
    options: CliOptions = typer_ctx.obj or CliOptions()
    ctx = get_context(options)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        overrides = app_config.env_overrides
        if overrides:
            ctx.console.summary("Overrides (from environment)", overrides)

    except IptconfError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    typer_ctx: typer.Context,
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite an existing file.", is_flag=True),
    ] = False,
) -> None:
    """Initialize a new configuration file.

    Creates a configuration file with defaults and comments.
    """
    options: CliOptions = typer_ctx.obj or CliOptions()
    ctx = get_context(options)

    try:
        init_config(ctx.config_path, force=force)
        ctx.console.success(f"Configuration file created: {ctx.config_path}")
        ctx.console.info("Edit the file to set rules_file and ip_version.")
    except IptconfError as e:
        handle_error(e)


@config_app.command("example")
def config_example(typer_ctx: typer.Context) -> None:
    """Print example configuration file."""
    ctx = get_context(typer_ctx.obj or CliOptions())
    ctx.console.print(get_example_config(), markup=False)


# ============================================================================
# Query commands
# ============================================================================

@app.command("show")
def show_cmd(
    typer_ctx: typer.Context,
    raw: Annotated[
        bool,
        typer.Option("--raw", help="Print plain iptables-save text.", is_flag=True),
    ] = False,
) -> None:
    """Show the whole rule-set in iptables-save format."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        text = serialize(ruleset, header=False)
        if raw:
            ctx.console.print(text, markup=False, emoji=False, end="", soft_wrap=True)
        elif text:
            ctx.console.rules_text(text, title=store.source)
        else:
            ctx.console.info("Rule-set is empty")
    except IptconfError as e:
        handle_error(e)


@app.command("tables")
def tables_cmd(typer_ctx: typer.Context) -> None:
    """List tables in first-seen order."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        rows = [
            [name, str(len(ruleset.get_table_chains(name) or []))]
            for name in ruleset.get_all_tables()
        ]
        ctx.console.table("Tables", ["Table", "Chains"], rows)
    except IptconfError as e:
        handle_error(e)


@app.command("chains")
def chains_cmd(typer_ctx: typer.Context, table: TableArg) -> None:
    """List the chains of a table."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        if ruleset.get_table(table) is None:
            raise ValidationError(
                f"Table '{table}' does not exist",
                hint=f"Known tables: {', '.join(ruleset.get_all_tables()) or 'none'}",
            )
        ctx.console.table(
            f"Chains in {table}",
            ["Chain", "Policy", "Rules", "Counters", "References"],
            _chain_rows(ruleset, table),
        )
    except IptconfError as e:
        handle_error(e)


@app.command("rules")
def rules_cmd(
    typer_ctx: typer.Context,
    table: TableArg,
    chain: ChainArg,
    source: Annotated[
        bool,
        typer.Option("--source", help="Show the rule lines as they were read.", is_flag=True),
    ] = False,
) -> None:
    """List the rules of a chain with their indexes."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        rules = ruleset.get_all_rules(table, chain)
        if rules is None:
            raise ValidationError(f"Chain '{chain}' does not exist in table '{table}'")

        if source:
            lines = ruleset.get_all_rule_strings(table, chain) or []
            rows = [[str(i), escape(line)] for i, line in enumerate(lines)]
            ctx.console.table(f"{table}/{chain} (source)", ["#", "Line"], rows)
            return

        rows = []
        for index, rule in enumerate(rules):
            counters = (
                f"{rule.packet_counter}:{rule.byte_counter}" if rule.has_counters else ""
            )
            rows.append([str(index), counters, escape(str(rule))])
        ctx.console.table(f"{table}/{chain}", ["#", "Counters", "Rule"], rows)
    except IptconfError as e:
        handle_error(e)


@app.command("refs")
def refs_cmd(typer_ctx: typer.Context, table: TableArg, chain: ChainArg) -> None:
    """List the rules that jump or go to a user-defined chain."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        refs = ruleset.get_referring_rules(table, chain)
        if refs is None:
            raise ValidationError(
                f"References are not tracked for '{chain}' in table '{table}'",
                hint="The table must exist and the chain must be user-defined",
            )
        if not refs:
            ctx.console.info(f"No rules refer to '{chain}'")
            return
        rows = [[escape(ref.chain), str(ref.index)] for ref in refs]
        ctx.console.table(f"Rules referring to {chain}", ["Chain", "#"], rows)
    except IptconfError as e:
        handle_error(e)


# ============================================================================
# Chain commands
# ============================================================================

@app.command("add-chain")
def add_chain_cmd(typer_ctx: typer.Context, table: TableArg, chain: ChainArg) -> None:
    """Add a user-defined chain (the table is created if needed)."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        check(ruleset, ruleset.add_chain(table, chain))
        save(store, ruleset)
        ctx.console.success(f"Chain '{chain}' added to table '{table}'")
    except IptconfError as e:
        handle_error(e)


@app.command("rename-chain")
def rename_chain_cmd(
    typer_ctx: typer.Context,
    table: TableArg,
    old: Annotated[str, typer.Argument(help="Current chain name.")],
    new: Annotated[str, typer.Argument(help="New chain name.")],
    no_cascade: Annotated[
        bool,
        typer.Option("--no-cascade", help="Leave jump/goto targets unchanged.", is_flag=True),
    ] = False,
) -> None:
    """Rename a user-defined chain and the rules that jump to it."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        check(ruleset, ruleset.rename_chain(table, old, new, cascade=not no_cascade))
        save(store, ruleset)
        ctx.console.success(f"Chain '{old}' renamed to '{new}'")
    except IptconfError as e:
        handle_error(e)


@app.command("remove-chain")
def remove_chain_cmd(
    typer_ctx: typer.Context,
    table: TableArg,
    chain: ChainArg,
    delete_refs: Annotated[
        bool,
        typer.Option(
            "--delete-refs",
            help="Delete the rules that jump to the chain first.",
            is_flag=True,
        ),
    ] = False,
) -> None:
    """Remove a user-defined chain that no rule refers to."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        if delete_refs:
            # References come last-first, so earlier indexes stay valid
            for ref in ruleset.get_referring_rules(table, chain) or []:
                check(ruleset, ruleset.remove_rule(table, ref.chain, ref.index))
                ctx.console.verbose(f"Deleted {ref.chain}[{ref.index}]")
        check(ruleset, ruleset.remove_chain(table, chain))
        save(store, ruleset)
        ctx.console.success(f"Chain '{chain}' removed from table '{table}'")
    except IptconfError as e:
        handle_error(e)


@app.command("flush")
def flush_cmd(typer_ctx: typer.Context, table: TableArg, chain: ChainArg) -> None:
    """Delete every rule of a chain."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        check(ruleset, ruleset.flush_chain(table, chain))
        save(store, ruleset)
        ctx.console.success(f"Chain '{chain}' flushed")
    except IptconfError as e:
        handle_error(e)


@app.command("policy")
def policy_cmd(
    typer_ctx: typer.Context,
    table: TableArg,
    chain: ChainArg,
    policy: Annotated[
        Optional[str],
        typer.Argument(help="New policy (ACCEPT, DROP, QUEUE, RETURN). Omit to show."),
    ] = None,
) -> None:
    """Show or set the policy of a built-in chain."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        if policy is None:
            current = ruleset.get_policy(table, chain)
            if current is None:
                raise ValidationError(
                    f"No policy for '{chain}' in table '{table}'",
                    hint="Only existing built-in chains have a policy",
                )
            ctx.console.print(current)
            return

        check(ruleset, ruleset.set_policy(table, chain, policy.upper()))
        save(store, ruleset)
        ctx.console.success(f"Policy of '{chain}' set to {policy.upper()}")
    except IptconfError as e:
        handle_error(e)


@app.command("zero")
def zero_cmd(
    typer_ctx: typer.Context,
    table: TableArg,
    chain: ChainArg,
    rule: Annotated[
        Optional[int],
        typer.Option("--rule", "-r", help="Zero only this rule's counters."),
    ] = None,
) -> None:
    """Reset packet and byte counters of a chain or one of its rules."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        if rule is None:
            check(ruleset, ruleset.zero_chain_counters(table, chain))
        else:
            check(ruleset, ruleset.zero_rule_counters(table, chain, rule))
        save(store, ruleset)
        ctx.console.success("Counters zeroed")
    except IptconfError as e:
        handle_error(e)


# ============================================================================
# Rule commands
# ============================================================================

@app.command("append")
def append_cmd(
    typer_ctx: typer.Context,
    table: TableArg,
    chain: ChainArg,
    rule: RuleArg,
) -> None:
    """Append a rule to a chain.

    [bold]Example:[/bold]
        iptconf append filter INPUT -- -s 10.0.0.0/8 -j DROP
    """
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        check(ruleset, ruleset.append_rule(table, chain, build_rule(rule)))
        save(store, ruleset)
        ctx.console.success(f"Rule appended to '{chain}'")
    except IptconfError as e:
        handle_error(e)


@app.command("insert")
def insert_cmd(
    typer_ctx: typer.Context,
    table: TableArg,
    chain: ChainArg,
    index: Annotated[int, typer.Argument(help="Zero-based position; past the end appends.")],
    rule: RuleArg,
) -> None:
    """Insert a rule at a position, shifting later rules down."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        check(ruleset, ruleset.insert_rule(table, chain, index, build_rule(rule)))
        save(store, ruleset)
        ctx.console.success(f"Rule inserted into '{chain}'")
    except IptconfError as e:
        handle_error(e)


@app.command("replace")
def replace_cmd(
    typer_ctx: typer.Context,
    table: TableArg,
    chain: ChainArg,
    index: Annotated[int, typer.Argument(help="Zero-based position; past the end appends.")],
    rule: RuleArg,
) -> None:
    """Replace the rule at a position."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        check(ruleset, ruleset.replace_rule(table, chain, index, build_rule(rule)))
        save(store, ruleset)
        ctx.console.success(f"Rule {index} of '{chain}' replaced")
    except IptconfError as e:
        handle_error(e)


@app.command("delete")
def delete_cmd(
    typer_ctx: typer.Context,
    table: TableArg,
    chain: ChainArg,
    index: Annotated[int, typer.Argument(help="Zero-based position of the rule.")],
) -> None:
    """Delete the rule at a position."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        check(ruleset, ruleset.remove_rule(table, chain, index))
        save(store, ruleset)
        ctx.console.success(f"Rule {index} deleted from '{chain}'")
    except IptconfError as e:
        handle_error(e)


@app.command("move")
def move_cmd(
    typer_ctx: typer.Context,
    table: TableArg,
    chain: ChainArg,
    old: Annotated[int, typer.Argument(help="Current position.")],
    new: Annotated[int, typer.Argument(help="New position.")],
) -> None:
    """Move a rule to a new position within its chain."""
    ctx, store = get_store(typer_ctx)

    try:
        ruleset = store.load()
        check(ruleset, ruleset.change_rule_index(table, chain, old, new))
        save(store, ruleset)
        ctx.console.success(f"Rule moved from {old} to {new}")
    except IptconfError as e:
        handle_error(e)


# ============================================================================
# Apply command
# ============================================================================

@app.command("apply")
def apply_cmd(
    typer_ctx: typer.Context,
    no_counters: Annotated[
        bool,
        typer.Option("--no-counters", help="Do not restore packet/byte counters.", is_flag=True),
    ] = False,
) -> None:
    """Load the rules file into the kernel with iptables-restore.

    The file is parsed first, so a malformed file is never applied.
    """
    ctx, store = get_store(typer_ctx)

    try:
        if store.rules_file is None:
            raise ConfigurationError(
                "No rules file to apply",
                hint="Set rules_file in the configuration or pass --file",
            )
        ruleset = store.load()
        store.apply(ruleset, restore_counters=False if no_counters else None)
    except IptconfError as e:
        handle_error(e)


if __name__ == "__main__":
    app()
