"""
Configuration — Centralized settings management

Config hierarchy (highest to lowest priority):
  1. Project config (.incremake/config.yaml)
  2. User config (~/.incremake/config.yaml)
  3. Environment variables
  4. Defaults

Environment variables:
- INCREMAKE_QUEUE_SIZE: Capacity of the artifact hand-off queue (default: 1024)
- INCREMAKE_IDLE_BACKOFF: Indexer idle sleep in seconds (default: 0.005)
- INCREMAKE_USE_EMBEDDED: Run the backend in-process (default: false)
"""

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List


DEFAULT_MAIN_MARKER = "com.sun.tools.javac.Main"
DEFAULT_ARTIFACTLESS_SOURCES = ["package-info.java"]


@dataclass
class PipelineConfig:
    """Process pipeline tuning."""
    queue_size: int = 1024        # bounded FIFO between reader and indexer
    idle_backoff: float = 0.005   # indexer sleep when the queue is empty

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        if self.queue_size < 1:
            return "pipeline.queue_size must be >= 1"
        if self.idle_backoff <= 0:
            return "pipeline.idle_backoff must be > 0"
        return None


@dataclass
class CompilerConfig:
    """Backend invocation preferences."""
    embedded: bool = False
    main_marker: str = DEFAULT_MAIN_MARKER

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        if not self.main_marker:
            return "compiler.main_marker must not be empty"
        return None


@dataclass
class OutputConfig:
    """Artifact naming and relocation preferences."""
    artifactless_sources: List[str] = field(default_factory=lambda: list(DEFAULT_ARTIFACTLESS_SOURCES))
    nested_separator: str = "$"
    artifact_suffix: str = ".class"

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        if not self.nested_separator:
            return "output.nested_separator must not be empty"
        if not self.artifact_suffix.startswith("."):
            return f"output.artifact_suffix must start with '.', got '{self.artifact_suffix}'"
        return None


@dataclass
class Config:
    """Application configuration."""
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    compiler: CompilerConfig = field(default_factory=CompilerConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def validate(self) -> Optional[str]:
        """First validation error of any section, or None."""
        for section in (self.pipeline, self.compiler, self.output):
            error = section.validate()
            if error:
                return error
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "pipeline": {
                "queue_size": self.pipeline.queue_size,
                "idle_backoff": self.pipeline.idle_backoff
            },
            "compiler": {
                "embedded": self.compiler.embedded,
                "main_marker": self.compiler.main_marker
            },
            "output": {
                "artifactless_sources": list(self.output.artifactless_sources),
                "nested_separator": self.output.nested_separator,
                "artifact_suffix": self.output.artifact_suffix
            }
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create from dictionary."""
        pipeline_data = data.get("pipeline", {}) or {}
        compiler_data = data.get("compiler", {}) or {}
        output_data = data.get("output", {}) or {}

        return cls(
            pipeline=PipelineConfig(
                queue_size=_to_int(pipeline_data.get("queue_size"), 1024),
                idle_backoff=_to_float(pipeline_data.get("idle_backoff"), 0.005)
            ),
            compiler=CompilerConfig(
                embedded=_to_bool(compiler_data.get("embedded"), False),
                main_marker=compiler_data.get("main_marker", DEFAULT_MAIN_MARKER)
            ),
            output=OutputConfig(
                artifactless_sources=list(output_data.get("artifactless_sources", DEFAULT_ARTIFACTLESS_SOURCES)),
                nested_separator=output_data.get("nested_separator", "$"),
                artifact_suffix=output_data.get("artifact_suffix", ".class")
            )
        )


class ConfigManager:
    """
    Manages configuration loading and persistence.

    Hierarchy:
      1. Project config (.incremake/config.yaml)
      2. User config (~/.incremake/config.yaml)
      3. Environment
      4. Defaults
    """

    USER_CONFIG_DIR = Path.home() / ".incremake"
    USER_CONFIG_FILE = USER_CONFIG_DIR / "config.yaml"
    PROJECT_CONFIG_DIR = ".incremake"
    PROJECT_CONFIG_FILE = "config.yaml"

    def __init__(self, project_dir: Optional[Path] = None):
        self.project_dir = Path(project_dir) if project_dir else Path.cwd()
        self._config: Optional[Config] = None

    @property
    def project_config_path(self) -> Path:
        return self.project_dir / self.PROJECT_CONFIG_DIR / self.PROJECT_CONFIG_FILE

    @property
    def user_config_path(self) -> Path:
        return self.USER_CONFIG_FILE

    @property
    def state_dir(self) -> Path:
        """Directory holding persisted build state."""
        return self.project_dir / self.PROJECT_CONFIG_DIR

    def load(self) -> Config:
        """Load configuration from all sources."""
        if self._config is not None:
            return self._config

        # Start with defaults, then environment
        config_data: Dict[str, Any] = _env_overrides()

        # Layer 2: User config
        config_data = self._merge(config_data, self._read(self.user_config_path))

        # Layer 1: Project config (highest priority)
        config_data = self._merge(config_data, self._read(self.project_config_path))

        self._config = Config.from_dict(config_data)
        return self._config

    def save_project(self, config: Config):
        """Save configuration to project config file."""
        self.project_config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.project_config_path, 'w') as f:
            yaml.dump(config.to_dict(), f, default_flow_style=False)

        self._config = config

    def save_user(self, config: Config):
        """Save configuration to user config file."""
        self.user_config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.user_config_path, 'w') as f:
            yaml.dump(config.to_dict(), f, default_flow_style=False)

        self._config = config

    def set(self, key: str, value: str, scope: str = "project") -> Optional[str]:
        """
        Set a configuration value.

        Args:
            key: Dot-separated key (e.g., "pipeline.queue_size")
            value: Value to set
            scope: "project" or "user"

        Returns:
            Error message or None if successful
        """
        config = self.load()

        parts = key.split(".")
        if len(parts) != 2:
            return f"Invalid key format: {key}. Use 'section.setting' (e.g., 'pipeline.queue_size')"

        section, setting = parts

        try:
            if section == "pipeline":
                if setting == "queue_size":
                    config.pipeline.queue_size = int(value)
                elif setting == "idle_backoff":
                    config.pipeline.idle_backoff = float(value)
                else:
                    return f"Unknown pipeline setting: {setting}. Valid: queue_size, idle_backoff"
                error = config.pipeline.validate()

            elif section == "compiler":
                if setting == "embedded":
                    config.compiler.embedded = value.strip().lower() in _TRUE_VALUES
                elif setting == "main_marker":
                    config.compiler.main_marker = value
                else:
                    return f"Unknown compiler setting: {setting}. Valid: embedded, main_marker"
                error = config.compiler.validate()

            elif section == "output":
                if setting == "artifactless_sources":
                    config.output.artifactless_sources = [v.strip() for v in value.split(",") if v.strip()]
                elif setting == "nested_separator":
                    config.output.nested_separator = value
                elif setting == "artifact_suffix":
                    config.output.artifact_suffix = value
                else:
                    return f"Unknown output setting: {setting}. Valid: artifactless_sources, nested_separator, artifact_suffix"
                error = config.output.validate()

            else:
                return f"Unknown section: {section}. Valid: pipeline, compiler, output"
        except ValueError:
            return f"Invalid value for {key}: {value}"

        if error:
            # Drop the invalid in-memory value
            self._config = None
            return error

        if scope == "project":
            self.save_project(config)
        else:
            self.save_user(config)

        return None

    def get(self, key: str) -> Optional[str]:
        """Get a configuration value."""
        config = self.load()

        parts = key.split(".")
        if len(parts) != 2:
            return None

        section, setting = parts
        data = config.to_dict().get(section, {})
        if setting not in data:
            return None

        value = data[setting]
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, list):
            return ",".join(value)
        return str(value)

    def _read(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError):
            return {}  # Ignore malformed config
        return data if isinstance(data, dict) else {}

    def _merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dicts, override wins."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge(result[key], value)
            else:
                result[key] = value
        return result


def get_config(project_dir: Optional[Path] = None) -> Config:
    """Convenience function to get configuration."""
    return ConfigManager(project_dir).load()


def _env_overrides() -> Dict[str, Any]:
    """Config layer built from environment variables that are set."""
    data: Dict[str, Any] = {}
    if os.environ.get("INCREMAKE_QUEUE_SIZE"):
        data.setdefault("pipeline", {})["queue_size"] = _get_int_env("INCREMAKE_QUEUE_SIZE", 1024)
    if os.environ.get("INCREMAKE_IDLE_BACKOFF"):
        data.setdefault("pipeline", {})["idle_backoff"] = _get_float_env("INCREMAKE_IDLE_BACKOFF", 0.005)
    if os.environ.get("INCREMAKE_USE_EMBEDDED"):
        data.setdefault("compiler", {})["embedded"] = _get_bool_env("INCREMAKE_USE_EMBEDDED", False)
    return data


_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


def _to_bool(value: Any, default: bool) -> bool:
    """Coerce a config value to bool; unrecognized values give the default."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        value = value.strip().lower()
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
    return default


def _to_int(value: Any, default: int) -> int:
    """Coerce a config value to int; unparseable values give the default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_float(value: Any, default: float) -> float:
    """Coerce a config value to float; unparseable values give the default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _get_bool_env(key: str, default: bool) -> bool:
    """Get boolean from environment variable."""
    return _to_bool(os.environ.get(key, ""), default)


def _get_int_env(key: str, default: int) -> int:
    """Get integer from environment variable."""
    return _to_int(os.environ.get(key) or None, default)


def _get_float_env(key: str, default: float) -> float:
    """Get float from environment variable."""
    return _to_float(os.environ.get(key) or None, default)
