"""Configuration management using Pydantic.

Provides:
- Typed configuration model with validation
- YAML file loading with defaults
- Environment variable overrides
- Configuration initialization and display
"""

import os
import shlex
from pathlib import Path
from typing import Optional

import yaml
from jinja2 import Environment, PackageLoader, select_autoescape
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings

from iptconf.core.exceptions import ConfigurationError


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/iptconf/config.yaml")
DEFAULT_SBIN_DIR = Path("/sbin")

VALID_IP_VERSIONS = (4, 6)


class RulesConfig(BaseModel):
    """Root configuration model.

    Loaded from /etc/iptconf/config.yaml. Every value can be overridden
    from the environment (see ``EnvOverrides``).
    """

    # Where rules are loaded from and committed to. None means the live
    # kernel tables via iptables-save / iptables-restore.
    rules_file: Optional[Path] = None

    ip_version: int = 4
    elevation_command: str = ""
    restore_counters: bool = True
    sbin_dir: Path = DEFAULT_SBIN_DIR

    @field_validator("ip_version")
    @classmethod
    def validate_ip_version(cls, v: int) -> int:
        if v not in VALID_IP_VERSIONS:
            raise ValueError(f"ip_version must be one of: {list(VALID_IP_VERSIONS)}")
        return v

    @field_validator("elevation_command")
    @classmethod
    def validate_elevation_command(cls, v: str) -> str:
        try:
            shlex.split(v)
        except ValueError as e:
            raise ValueError(f"elevation_command is not a valid command line: {e}")
        return v.strip()

    @property
    def save_command(self) -> Path:
        """The iptables-save variant for this IP version."""
        name = "ip6tables-save" if self.ip_version == 6 else "iptables-save"
        return self.sbin_dir / name

    @property
    def restore_command(self) -> Path:
        """The iptables-restore variant for this IP version."""
        name = "ip6tables-restore" if self.ip_version == 6 else "iptables-restore"
        return self.sbin_dir / name

    @property
    def elevation_prefix(self) -> list[str]:
        """Elevation command split into argv words."""
        return shlex.split(self.elevation_command)

    @classmethod
    def load(cls, path: Path) -> "RulesConfig":
        """Read settings from a YAML mapping at ``path``.

        Raises:
            ConfigurationError: If the file is missing, unreadable, not a
                mapping, or holds an invalid value
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: iptconf config init",
            )

        try:
            data = yaml.safe_load(path.read_text())
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                details=[e.strerror or str(e)],
                hint="Check file permissions or run with sudo",
            ) from e
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
                details=[f"found {type(data).__name__}"],
            )

        try:
            return cls(**data)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration in {path}",
                details=[
                    f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                    for err in e.errors()
                ],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "RulesConfig":
        """Like ``load``, but a missing file yields the defaults."""
        path = path or DEFAULT_CONFIG_PATH
        return cls.load(path) if path.exists() else cls()

    def to_yaml(self) -> str:
        """Settings as YAML, omitting unset values."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


class EnvOverrides(BaseSettings):
    """Overrides loaded from environment variables."""

    rules_file: Optional[Path] = Field(None, alias="IPTCONF_RULES_FILE")
    ip_version: Optional[int] = Field(None, alias="IPTCONF_IP_VERSION")
    elevation_command: Optional[str] = Field(None, alias="IPTCONF_ELEVATION_COMMAND")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


class AppConfig:
    """Application configuration combining config file and environment.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[RulesConfig] = None,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        base = config or RulesConfig.load_or_default(self.config_path)
        self._env = EnvOverrides()
        self._config = self._apply_overrides(base)

    def _apply_overrides(self, base: RulesConfig) -> RulesConfig:
        overrides = self._env.model_dump(exclude_none=True)
        if not overrides:
            return base
        try:
            return RulesConfig(**{**base.model_dump(), **overrides})
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration override from environment: {e}",
                hint="Check the IPTCONF_* environment variables",
            ) from e

    @property
    def config(self) -> RulesConfig:
        """Get the effective configuration."""
        return self._config

    @property
    def rules_file(self) -> Optional[Path]:
        """Shortcut to the rules file."""
        return self._config.rules_file

    @property
    def ip_version(self) -> int:
        """Shortcut to the IP version."""
        return self._config.ip_version

    @property
    def env_overrides(self) -> dict[str, object]:
        """Values taken from the environment."""
        return self._env.model_dump(exclude_none=True)


def get_jinja_env() -> Environment:
    """Get Jinja2 environment for templates."""
    return Environment(
        loader=PackageLoader("iptconf", "templates"),
        autoescape=select_autoescape(),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def get_example_config(config: Optional[RulesConfig] = None) -> str:
    """Generate example configuration file content.

    Args:
        config: Values to fill in (defaults if None)
    """
    config = config or RulesConfig()
    template = get_jinja_env().get_template("config.yaml.j2")
    return template.render(
        rules_file=config.rules_file,
        ip_version=config.ip_version,
        elevation_command=config.elevation_command,
        restore_counters=str(config.restore_counters),
        sbin_dir=config.sbin_dir,
        save_name=config.save_command.name,
        restore_name=config.restore_command.name,
    )


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Args:
        path: Path to create config file
        force: Overwrite if exists

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o644)
