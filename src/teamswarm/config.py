"""Settings for backends, team storage and the message bus.

Values come from the first file found, in this order:

1. the path passed to ``load_config()`` (or ``teamswarm --config``)
2. ``.teamswarm.yaml`` / ``.teamswarm.yml`` / ``.teamswarm.toml`` in the
   working directory, then in each parent directory

With no file every setting keeps its default. ``get_config()`` hands out one
shared instance; ``reload_config()`` swaps it.

Example configuration (.teamswarm.yaml):
    backend:
      provider: auto
      settle_delay_ms: 200
      leader_socket: claude-leader

    teams:
      config_root: /home/me/.claude

    messaging:
      default_sender: team-lead

Example configuration (.teamswarm.toml):
    [backend]
    provider = "tmux"
    settle_delay_ms = 300

    [teams]
    config_root = "/home/me/.claude"
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

try:
    import tomllib  # Python 3.11+

    HAS_TOML = True
except ImportError:
    try:
        import tomli as tomllib  # Python 3.10

        HAS_TOML = True
    except ImportError:
        HAS_TOML = False

import yaml

from .logging_config import get_logger

logger = get_logger(__name__)

MAX_CONFIG_FILE_SIZE_BYTES = 1 * 1024 * 1024  # 1MB
MAX_YAML_NESTING_DEPTH = 10

CONFIG_FILE_STEM = ".teamswarm"

VALID_PROVIDERS = ("auto", "tmux", "iterm2")

__all__ = [
    "BackendConfig",
    "TeamsConfig",
    "MessagingConfig",
    "TeamSwarmConfig",
    "load_config",
    "get_config",
    "reload_config",
    "find_config_file",
    "ConfigValidationError",
    "VALID_PROVIDERS",
]


class ConfigValidationError(Exception):
    """A configuration file or value was rejected."""


@dataclass
class BackendConfig:
    """Configuration for terminal backends.

    Attributes:
        provider: Backend to use ("auto", "tmux", "iterm2")
        settle_delay_ms: Pause after a tmux layout change before the pane
            list is read again
        leader_socket: tmux socket name (-L) used for externally spawned swarms
        swarm_session_name: Detached session hosting an external swarm
        swarm_window_name: Window inside the swarm session
        hidden_session_name: Session that hidden panes are parked in
        first_split_percent: Width given to the first teammate pane
        leader_width_percent: Width the leader pane is resized to on rebalance
    """

    provider: str = "auto"
    settle_delay_ms: int = 200
    leader_socket: str = "claude-leader"
    swarm_session_name: str = "claude-swarm"
    swarm_window_name: str = "swarm-view"
    hidden_session_name: str = "claude-hidden"
    first_split_percent: int = 70
    leader_width_percent: int = 30

    def validate(self) -> None:
        if not isinstance(self.provider, str) or self.provider.lower() not in VALID_PROVIDERS:
            raise ConfigValidationError(
                f"backend.provider must be one of {VALID_PROVIDERS}, got '{self.provider}'"
            )
        if self.settle_delay_ms < 0:
            raise ConfigValidationError(
                f"settle_delay_ms must be >= 0, got {self.settle_delay_ms}"
            )
        if self.settle_delay_ms > 5000:
            raise ConfigValidationError(
                f"settle_delay_ms too high (max 5000), got {self.settle_delay_ms}"
            )
        for name in ("leader_socket", "swarm_session_name", "swarm_window_name",
                     "hidden_session_name"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigValidationError(f"backend.{name} cannot be empty")
            if ":" in value or "." in value:
                raise ConfigValidationError(
                    f"backend.{name} cannot contain ':' or '.', got '{value}'"
                )
        for name in ("first_split_percent", "leader_width_percent"):
            value = getattr(self, name)
            if not 10 <= value <= 90:
                raise ConfigValidationError(
                    f"backend.{name} must be between 10 and 90, got {value}"
                )


@dataclass
class TeamsConfig:
    """Configuration for team persistence.

    Attributes:
        config_root: Directory holding teams/ and tasks/ (None = ~/.claude)
    """

    config_root: Path | None = None

    def validate(self) -> None:
        if self.config_root is not None:
            if not isinstance(self.config_root, (Path, str)):
                raise ConfigValidationError(
                    f"config_root must be a Path or str, got {type(self.config_root)}"
                )
            root = Path(self.config_root)
            if root.exists() and not root.is_dir():
                raise ConfigValidationError(f"config_root is not a directory: {root}")


@dataclass
class MessagingConfig:
    """Configuration for the in-process message bus.

    Attributes:
        default_sender: Sender name used when neither the caller nor the bus
            knows who is sending
    """

    default_sender: str = "unknown"

    def validate(self) -> None:
        if not self.default_sender or not self.default_sender.strip():
            raise ConfigValidationError("default_sender cannot be empty")
        if len(self.default_sender) > 64:
            raise ConfigValidationError(
                f"default_sender too long (max 64 chars), got {len(self.default_sender)}"
            )


@dataclass
class TeamSwarmConfig:
    """All teamswarm settings, one dataclass per section.

    Attributes:
        backend: Terminal backend configuration
        teams: Team persistence configuration
        messaging: Message bus configuration
    """

    backend: BackendConfig = field(default_factory=BackendConfig)
    teams: TeamsConfig = field(default_factory=TeamsConfig)
    messaging: MessagingConfig = field(default_factory=MessagingConfig)

    def validate(self) -> None:
        """Raise ConfigValidationError on the first invalid section."""
        self.backend.validate()
        self.teams.validate()
        self.messaging.validate()

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form, as written by ``teamswarm config init``."""
        teams = asdict(self.teams)
        if self.teams.config_root is not None:
            teams["config_root"] = str(self.teams.config_root)
        return {
            "backend": asdict(self.backend),
            "teams": teams,
            "messaging": asdict(self.messaging),
        }


def _nesting_depth(obj: Any) -> int:
    if isinstance(obj, dict):
        return 1 + max((_nesting_depth(v) for v in obj.values()), default=0)
    if isinstance(obj, list):
        return 1 + max((_nesting_depth(v) for v in obj), default=0)
    return 0


def _read_bytes(path: Path) -> bytes:
    try:
        size = path.stat().st_size
        if size > MAX_CONFIG_FILE_SIZE_BYTES:
            raise ConfigValidationError(
                f"Configuration file too large: {size} bytes "
                f"(limit {MAX_CONFIG_FILE_SIZE_BYTES})"
            )
        return path.read_bytes()
    except OSError as e:
        raise ConfigValidationError(f"Cannot read configuration file {path}: {e}") from e


def _parse_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(_read_bytes(path))
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Failed to parse YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(f"Top level of {path} must be a mapping")
    if _nesting_depth(data) > MAX_YAML_NESTING_DEPTH:
        raise ConfigValidationError(
            f"{path} nests deeper than {MAX_YAML_NESTING_DEPTH} levels"
        )
    return data


def _parse_toml(path: Path) -> dict[str, Any]:
    if not HAS_TOML:
        raise ConfigValidationError(
            f"Cannot read {path}: TOML needs Python 3.11+ or the tomli package"
        )
    try:
        return tomllib.loads(_read_bytes(path).decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise ConfigValidationError(f"Failed to parse TOML in {path}: {e}") from e


_PARSERS = {
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
    ".toml": _parse_toml,
}


def find_config_file(start_path: Path | None = None) -> Path | None:
    """Walk from ``start_path`` (default: cwd) up to the filesystem root.

    In each directory ``.teamswarm.yaml`` wins over ``.teamswarm.yml``, which
    wins over ``.teamswarm.toml``. The first hit is returned.
    """
    start = start_path or Path.cwd()
    suffixes = [s for s in _PARSERS if s != ".toml" or HAS_TOML]

    for directory in (start, *start.parents):
        for suffix in suffixes:
            candidate = directory / f"{CONFIG_FILE_STEM}{suffix}"
            if candidate.is_file():
                return candidate
    return None


def _build_section(section_cls: type, name: str, data: Any) -> Any:
    if not data:
        return section_cls()
    if not isinstance(data, dict):
        raise TypeError(f"section '{name}' must be a mapping")

    defaults = section_cls()
    known = {f.name for f in fields(section_cls)}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown configuration key {name}.{key}")
            continue
        default = getattr(defaults, key)
        if isinstance(default, int):
            value = int(value)
        elif isinstance(default, str):
            if value is None:
                raise TypeError(f"{name}.{key} must be a string, got null")
            value = str(value)
        kwargs[key] = value
    return section_cls(**kwargs)


def _dict_to_config(data: dict[str, Any]) -> TeamSwarmConfig:
    """Build a TeamSwarmConfig from parsed file contents.

    Missing sections and keys keep their defaults; integer settings accept
    numeric strings.

    Raises:
        ConfigValidationError: If a value has the wrong shape or type
    """
    try:
        backend = _build_section(BackendConfig, "backend", data.get("backend"))
        teams = _build_section(TeamsConfig, "teams", data.get("teams"))
        messaging = _build_section(MessagingConfig, "messaging", data.get("messaging"))
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"Failed to convert configuration: {e}") from e

    if teams.config_root:
        teams.config_root = Path(teams.config_root).expanduser()
    return TeamSwarmConfig(backend=backend, teams=teams, messaging=messaging)


def load_config(config_path: Path | None = None) -> TeamSwarmConfig:
    """Read, convert and validate the configuration.

    With no ``config_path`` the directory tree is searched; when nothing is
    found the defaults are returned.

    Raises:
        ConfigValidationError: Missing explicit file, unreadable or invalid contents
    """
    if config_path is not None:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise ConfigValidationError(f"Configuration file not found: {path}")
    else:
        path = find_config_file()

    data: dict[str, Any] = {}
    if path is not None:
        parser = _PARSERS.get(path.suffix.lower())
        if parser is None:
            raise ConfigValidationError(
                f"Unsupported configuration format '{path.suffix}' "
                f"(expected one of {', '.join(_PARSERS)})"
            )
        data = parser(path)
        logger.debug(f"Read configuration from {path}")

    config = _dict_to_config(data)
    config.validate()
    return config


_config_instance: TeamSwarmConfig | None = None
_config_lock = threading.Lock()


def get_config() -> TeamSwarmConfig:
    """Process-wide configuration, loaded on first use."""
    global _config_instance

    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = load_config()
    return _config_instance


def reload_config(config_path: Path | None = None) -> TeamSwarmConfig:
    """Replace the process-wide configuration with a fresh load.

    Raises:
        ConfigValidationError: If the new configuration is invalid
    """
    global _config_instance

    with _config_lock:
        _config_instance = load_config(config_path)
        return _config_instance
