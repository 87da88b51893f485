"""Command execution for the iptables-save / iptables-restore boundary.

Provides:
- Safe command execution with output capture
- Elevation prefix (e.g. sudo) for privileged executables
- stdin piping for iptables-restore
- Dry-run mode support
"""

import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from iptconf.core.context import ExecutionContext
from iptconf.core.exceptions import CollaboratorError
from iptconf.core.files import atomic_write_text


@dataclass
class CommandResult:
    """Exit status and captured output of one command."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.return_code == 0


class CommandExecutor:
    """Runs the save/restore executables and reads or writes rules files.

    Writes and mutating commands are skipped under --dry-run.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        *,
        elevation: Optional[list[str]] = None,
    ) -> None:
        """Initialize executor with context.

        Args:
            ctx: Execution context with flags
            elevation: Command prefix used when ``elevate=True``
        """
        self.ctx = ctx
        self.elevation = list(elevation or [])

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        elevate: bool = False,
        input_text: Optional[str] = None,
        timeout: Optional[int] = None,
        mutating: bool = True,
    ) -> CommandResult:
        """Run ``command`` and capture its output.

        ``mutating=False`` marks read-only commands such as iptables-save,
        which still run under --dry-run. ``input_text`` is fed to stdin.

        Raises:
            CollaboratorError: If the command cannot start, times out, or
                exits non-zero while ``check`` is set
        """
        argv = [*self.elevation, *command] if elevate else list(command)
        shown = shlex.join(argv)

        if description:
            self.ctx.console.step(description)
        self.ctx.console.debug(f"Running: {shown}")

        if mutating and self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Run: {shown}")
            return CommandResult(argv, 0, "", "")

        result = self._invoke(argv, input_text, timeout, label=description or shown)
        if check and not result.success:
            raise CollaboratorError(
                f"Command failed: {description or shown}",
                command=shown,
                return_code=result.return_code,
                stderr=result.stderr.strip() or None,
            )
        return result

    def _invoke(
        self,
        argv: list[str],
        input_text: Optional[str],
        timeout: Optional[int],
        *,
        label: str,
    ) -> CommandResult:
        try:
            proc = subprocess.run(
                argv,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CollaboratorError(
                f"Command timed out after {timeout}s: {label}",
                command=shlex.join(argv),
            ) from e
        except OSError as e:
            raise CollaboratorError(
                f"Cannot execute {argv[0]}: {e.strerror or e}",
                command=shlex.join(argv),
                hint="Check that iptables is installed and sbin_dir is correct",
            ) from e
        return CommandResult(argv, proc.returncode, proc.stdout, proc.stderr)

    def read_file(self, path: Path, *, create: bool = False) -> str:
        """Read a text file.

        Args:
            path: File to read
            create: Create an empty file if it does not exist

        Returns:
            File content ("" for a freshly created file)

        Raises:
            CollaboratorError: If the file cannot be read or created
        """
        try:
            if not path.exists():
                if not create:
                    raise CollaboratorError(
                        f"Rules file not found: {path}",
                        hint="Check the rules_file setting or the --file option",
                    )
                if self.ctx.dry_run:
                    self.ctx.console.dry_run_msg(f"Create empty rules file {path}")
                    return ""
                self.ctx.console.verbose(f"Creating empty rules file {path}")
                path.parent.mkdir(parents=True, exist_ok=True)
                path.touch()
                return ""
            return path.read_text()
        except OSError as e:
            raise CollaboratorError(
                f"Cannot read rules file: {path}",
                details=[str(e)],
                hint="Check file permissions or run with sudo",
            ) from e

    def write_file(
        self,
        path: Path,
        content: str,
        *,
        description: Optional[str] = None,
    ) -> None:
        """Write content to a file atomically.

        Args:
            path: Destination path
            content: File content
            description: Human-readable description

        Raises:
            CollaboratorError: If the file cannot be written
        """
        self.ctx.console.step(description or f"Write {path}")

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Write {len(content)} bytes to {path}")
            if self.ctx.is_verbose:
                self.ctx.console.rules_text(content, title=str(path))
            return

        try:
            atomic_write_text(path, content)
        except OSError as e:
            raise CollaboratorError(
                f"Cannot write rules file: {path}",
                details=[str(e)],
                hint="Check file permissions or run with sudo",
            ) from e
