"""Configuration system using platformdirs for cross-platform paths."""

import os
import re
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import platformdirs

from .errors import ConfigError

APP_NAME = "mission-orchestrator"
APP_AUTHOR = "mission-orchestrator"

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

ORACLE_PROVIDERS = ("openrouter", "ollama", "vllm", "llamacpp")


@dataclass
class OrchestratorSettings:
	"""Control-loop limits and the environment handed to the coding agent."""

	max_iterations: int = 1000
	checkpoint_interval: int = 5
	artifact_preview_chars: int = 500
	# Back-to-back recovered failures allowed before the error is treated as unrecoverable
	max_consecutive_recoveries: int = 10
	# Seconds per criterion used for time estimates before anything completes
	avg_time_per_criterion: float = 600.0
	environment: dict[str, str] = field(default_factory=dict)


@dataclass
class OracleSettings:
	"""Chat-completions settings for the decision oracle.

	provider picks the backend: "openrouter" (default), or a local
	OpenAI-compatible server: "ollama", "vllm", "llamacpp". An empty
	base_url means the provider's usual address.
	"""

	provider: str = "openrouter"
	model: str = "anthropic/claude-opus-4-1"
	base_url: str = ""
	api_key: str = ""
	temperature: float = 0.5
	max_tokens: int = 4096
	retry_attempts: int = 3
	retry_delay: float = 1.0
	timeout: float = 120.0


@dataclass
class AgentSettings:
	"""How the claude CLI is invoked."""

	command: str = "claude"
	model: Optional[str] = None
	max_turns: Optional[int] = None
	timeout: float = 1800.0
	skip_permissions: bool = True
	track_git_changes: bool = True


@dataclass
class GitHubSettings:
	"""Issue missions and pull request publishing."""

	token: str = ""
	base_branch: str = "main"
	branch_prefix: str = "feature"
	comment_progress: bool = True


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))
	log_level: str = "INFO"

	orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
	oracle: OracleSettings = field(default_factory=OracleSettings)
	agent: AgentSettings = field(default_factory=AgentSettings)
	github: GitHubSettings = field(default_factory=GitHubSettings)

	# Derived paths
	sessions_db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	def __post_init__(self) -> None:
		self.sessions_db_path = self.data_dir / "sessions.db"
		self.log_dir = self.data_dir / "logs"

	@property
	def config_file(self) -> Path:
		return self.config_dir / "config.toml"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


def expand_env_refs(value: Any, environ: Mapping[str, str]) -> Any:
	"""Replace ${VAR} references in strings (recursively) from `environ`.

	Unknown variables expand to an empty string.
	"""
	if isinstance(value, str):
		return _ENV_REF.sub(lambda m: environ.get(m.group(1), ""), value)
	if isinstance(value, dict):
		return {k: expand_env_refs(v, environ) for k, v in value.items()}
	if isinstance(value, list):
		return [expand_env_refs(v, environ) for v in value]
	return value


def _apply_section(target: Any, data: dict, section: str) -> None:
	known = {f.name for f in fields(target)}
	for key, val in data.items():
		if key not in known:
			raise ConfigError(f"Unknown setting [{section}].{key}")
		setattr(target, key, val)


def _apply_toml(config: Config, toml_path: Path, environ: Mapping[str, str]) -> Config:
	"""Apply config.toml overrides if file exists."""
	if not toml_path.exists():
		return config

	try:
		with open(toml_path, "rb") as f:
			data = tomllib.load(f)
	except tomllib.TOMLDecodeError as e:
		raise ConfigError(f"Invalid TOML in {toml_path}: {e}") from e

	data = expand_env_refs(data, environ)

	sections = {"orchestrator", "oracle", "agent", "github"}
	path_fields = {"config_dir", "data_dir"}
	for key, val in data.items():
		if key in sections:
			if not isinstance(val, dict):
				raise ConfigError(f"[{key}] must be a table in {toml_path}")
			_apply_section(getattr(config, key), val, key)
		elif key in path_fields:
			setattr(config, key, Path(os.path.expanduser(val)))
		elif key == "log_level":
			config.log_level = str(val)
		else:
			raise ConfigError(f"Unknown setting '{key}' in {toml_path}")

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def _parse_int(env_key: str, raw: str) -> int:
	try:
		return int(raw)
	except ValueError as e:
		raise ConfigError(f"{env_key} must be an integer, got {raw!r}") from e


def _apply_env_overrides(config: Config, environ: Mapping[str, str]) -> Config:
	"""Apply MISSION_ORCHESTRATOR_* environment variable overrides."""
	path_map = {
		"MISSION_ORCHESTRATOR_CONFIG_DIR": "config_dir",
		"MISSION_ORCHESTRATOR_DATA_DIR": "data_dir",
	}
	for env_key, attr in path_map.items():
		val = environ.get(env_key)
		if val:
			setattr(config, attr, Path(val))

	if environ.get("MISSION_ORCHESTRATOR_LOG_LEVEL"):
		config.log_level = environ["MISSION_ORCHESTRATOR_LOG_LEVEL"]

	if environ.get("MISSION_ORCHESTRATOR_MAX_ITERATIONS"):
		config.orchestrator.max_iterations = _parse_int(
			"MISSION_ORCHESTRATOR_MAX_ITERATIONS", environ["MISSION_ORCHESTRATOR_MAX_ITERATIONS"]
		)

	if environ.get("MISSION_ORCHESTRATOR_CHECKPOINT_INTERVAL"):
		config.orchestrator.checkpoint_interval = _parse_int(
			"MISSION_ORCHESTRATOR_CHECKPOINT_INTERVAL", environ["MISSION_ORCHESTRATOR_CHECKPOINT_INTERVAL"]
		)

	if environ.get("OPENROUTER_API_KEY"):
		config.oracle.api_key = environ["OPENROUTER_API_KEY"]

	if environ.get("MISSION_ORCHESTRATOR_ORACLE_PROVIDER"):
		config.oracle.provider = environ["MISSION_ORCHESTRATOR_ORACLE_PROVIDER"]

	github_token = environ.get("GITHUB_TOKEN") or environ.get("GH_TOKEN")
	if github_token:
		config.github.token = github_token

	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def validate_config(config: Config) -> None:
	"""Raise ConfigError for values the orchestrator cannot run with."""
	if config.orchestrator.max_iterations < 1:
		raise ConfigError("orchestrator.max_iterations must be at least 1")
	if config.orchestrator.checkpoint_interval < 1:
		raise ConfigError("orchestrator.checkpoint_interval must be at least 1")
	if config.orchestrator.max_consecutive_recoveries < 1:
		raise ConfigError("orchestrator.max_consecutive_recoveries must be at least 1")
	if config.oracle.retry_attempts < 1:
		raise ConfigError("oracle.retry_attempts must be at least 1")
	if not 0 <= config.oracle.temperature <= 2:
		raise ConfigError("oracle.temperature must be between 0 and 2")
	if config.oracle.provider not in ORACLE_PROVIDERS:
		raise ConfigError(
			f"oracle.provider must be one of {', '.join(ORACLE_PROVIDERS)}, got {config.oracle.provider!r}"
		)


def load_config(
	config_path: Optional[Path] = None,
	environ: Optional[Mapping[str, str]] = None,
	ensure_dirs: bool = True,
) -> Config:
	"""Load config with precedence: env vars > config.toml > defaults.

	Args:
		config_path: Explicit config.toml (defaults to <config_dir>/config.toml)
		environ: Environment mapping (defaults to os.environ)
		ensure_dirs: Create config/data/log directories

	Raises:
		ConfigError: If the file or an override is invalid
	"""
	environ = os.environ if environ is None else environ

	config = Config()
	# The config dir override must apply before locating config.toml
	if environ.get("MISSION_ORCHESTRATOR_CONFIG_DIR"):
		config.config_dir = Path(environ["MISSION_ORCHESTRATOR_CONFIG_DIR"])

	config = _apply_toml(config, Path(config_path) if config_path else config.config_file, environ)
	config = _apply_env_overrides(config, environ)
	validate_config(config)

	if ensure_dirs:
		config.ensure_dirs()
	return config
