"""Tests for configuration loading."""

from pathlib import Path

import pytest

from mission_orchestrator.config import Config, expand_env_refs, load_config
from mission_orchestrator.errors import ConfigError


def _write_toml(path: Path, content: str) -> Path:
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(content)
	return path


class TestDefaults:
	"""Tests for default configuration."""

	def test_defaults(self, tmp_path):
		config = load_config(environ={"MISSION_ORCHESTRATOR_CONFIG_DIR": str(tmp_path / "cfg")}, ensure_dirs=False)

		assert config.orchestrator.max_iterations == 1000
		assert config.orchestrator.checkpoint_interval == 5
		assert config.oracle.model == "anthropic/claude-opus-4-1"
		assert config.oracle.temperature == 0.5
		assert config.oracle.api_key == ""
		assert config.oracle.provider == "openrouter"
		assert config.github.branch_prefix == "feature"
		assert config.agent.command == "claude"
		assert config.log_level == "INFO"

	def test_derived_paths(self, tmp_path):
		config = Config(config_dir=tmp_path / "cfg", data_dir=tmp_path / "data")

		assert config.sessions_db_path == tmp_path / "data" / "sessions.db"
		assert config.log_dir == tmp_path / "data" / "logs"
		assert config.config_file == tmp_path / "cfg" / "config.toml"

	def test_ensure_dirs(self, tmp_path):
		env = {
			"MISSION_ORCHESTRATOR_CONFIG_DIR": str(tmp_path / "cfg"),
			"MISSION_ORCHESTRATOR_DATA_DIR": str(tmp_path / "data"),
		}
		config = load_config(environ=env)

		assert config.config_dir.is_dir()
		assert config.log_dir.is_dir()


class TestTomlOverrides:
	"""Tests for config.toml."""

	def test_sections_apply(self, tmp_path):
		path = _write_toml(tmp_path / "config.toml", """
log_level = "DEBUG"
data_dir = "%s"

[orchestrator]
max_iterations = 50
checkpoint_interval = 2

[oracle]
model = "openai/gpt-4o"
temperature = 0.2

[agent]
max_turns = 30

[github]
base_branch = "develop"
comment_progress = false
""" % (tmp_path / "data"))

		config = load_config(path, environ={}, ensure_dirs=False)

		assert config.log_level == "DEBUG"
		assert config.orchestrator.max_iterations == 50
		assert config.orchestrator.checkpoint_interval == 2
		assert config.oracle.model == "openai/gpt-4o"
		assert config.oracle.temperature == 0.2
		assert config.agent.max_turns == 30
		assert config.github.base_branch == "develop"
		assert config.github.comment_progress is False
		assert config.sessions_db_path == tmp_path / "data" / "sessions.db"

	def test_env_refs_expand(self, tmp_path):
		path = _write_toml(tmp_path / "config.toml", '[oracle]\napi_key = "${MY_KEY}"\n')

		config = load_config(path, environ={"MY_KEY": "sk-test"}, ensure_dirs=False)

		assert config.oracle.api_key == "sk-test"

	def test_config_dir_env_locates_toml(self, tmp_path):
		_write_toml(tmp_path / "cfg" / "config.toml", "[orchestrator]\nmax_iterations = 7\n")

		config = load_config(environ={"MISSION_ORCHESTRATOR_CONFIG_DIR": str(tmp_path / "cfg")}, ensure_dirs=False)

		assert config.orchestrator.max_iterations == 7

	@pytest.mark.parametrize("content", [
		"[orchestrator\nmax_iterations = 1",
		"[orchestrator]\nmax_iteration = 10\n",
		"unknown = true\n",
		"orchestrator = 5\n",
	])
	def test_invalid_files(self, tmp_path, content):
		path = _write_toml(tmp_path / "config.toml", content)

		with pytest.raises(ConfigError):
			load_config(path, environ={}, ensure_dirs=False)


class TestEnvOverrides:
	"""Tests for environment variable overrides."""

	def test_env_beats_toml(self, tmp_path):
		path = _write_toml(tmp_path / "config.toml", "[orchestrator]\nmax_iterations = 50\n")
		env = {
			"MISSION_ORCHESTRATOR_MAX_ITERATIONS": "9",
			"MISSION_ORCHESTRATOR_CHECKPOINT_INTERVAL": "3",
			"MISSION_ORCHESTRATOR_LOG_LEVEL": "WARNING",
			"OPENROUTER_API_KEY": "sk-env",
		}

		config = load_config(path, environ=env, ensure_dirs=False)

		assert config.orchestrator.max_iterations == 9
		assert config.orchestrator.checkpoint_interval == 3
		assert config.log_level == "WARNING"
		assert config.oracle.api_key == "sk-env"

	def test_provider_and_github_token(self, tmp_path):
		env = {
			"MISSION_ORCHESTRATOR_CONFIG_DIR": str(tmp_path),
			"MISSION_ORCHESTRATOR_ORACLE_PROVIDER": "vllm",
			"GH_TOKEN": "ghp-fallback",
		}

		config = load_config(environ=env, ensure_dirs=False)

		assert config.oracle.provider == "vllm"
		assert config.github.token == "ghp-fallback"

	def test_github_token_beats_gh_token(self, tmp_path):
		env = {
			"MISSION_ORCHESTRATOR_CONFIG_DIR": str(tmp_path),
			"GITHUB_TOKEN": "ghp-primary",
			"GH_TOKEN": "ghp-fallback",
		}

		assert load_config(environ=env, ensure_dirs=False).github.token == "ghp-primary"

	def test_bad_integer(self, tmp_path):
		with pytest.raises(ConfigError, match="MISSION_ORCHESTRATOR_MAX_ITERATIONS"):
			load_config(
				environ={
					"MISSION_ORCHESTRATOR_CONFIG_DIR": str(tmp_path),
					"MISSION_ORCHESTRATOR_MAX_ITERATIONS": "lots",
				},
				ensure_dirs=False,
			)

	@pytest.mark.parametrize("env", [
		{"MISSION_ORCHESTRATOR_MAX_ITERATIONS": "0"},
		{"MISSION_ORCHESTRATOR_CHECKPOINT_INTERVAL": "0"},
		{"MISSION_ORCHESTRATOR_ORACLE_PROVIDER": "bedrock"},
	])
	def test_out_of_range_values(self, tmp_path, env):
		env = dict(env, MISSION_ORCHESTRATOR_CONFIG_DIR=str(tmp_path))
		with pytest.raises(ConfigError):
			load_config(environ=env, ensure_dirs=False)


def test_expand_env_refs_recurses():
	value = {"a": "${X}/bin", "b": ["${Y}", 3], "c": "${MISSING}"}

	assert expand_env_refs(value, {"X": "/opt", "Y": "y"}) == {"a": "/opt/bin", "b": ["y", 3], "c": ""}
