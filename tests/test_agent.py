"""Tests for the claude CLI coding agent."""

import json
import os
import stat

import pytest

from mission_orchestrator.config import AgentSettings
from mission_orchestrator.errors import AgentExecutionError, ErrorCode
from mission_orchestrator.orchestrator.agent import (
	ArtifactPreview,
	ClaudeCodeAgent,
	ExecutionContext,
	detect_session_end,
	infer_artifact_type,
)
from mission_orchestrator.sessions.models import ArtifactType


def fake_cli(tmp_path, stdout: str, exit_code: int = 0):
	"""Write an executable standing in for the claude CLI."""
	out_file = tmp_path / "cli_output.txt"
	out_file.write_text(stdout)
	script = tmp_path / "fake-claude"
	script.write_text(
		"#!/bin/sh\n"
		"if [ \"$1\" = \"--version\" ]; then echo '1.0.0 (Claude Code)'; exit 0; fi\n"
		f"printf '%s\\n' \"$@\" > '{tmp_path / 'argv.txt'}'\n"
		f"echo \"$CI_MARKER\" > '{tmp_path / 'env.txt'}'\n"
		f"cat '{out_file}'\n"
		f"exit {exit_code}\n"
	)
	script.chmod(script.stat().st_mode | stat.S_IXUSR)
	return str(script)


class TestInferArtifactType:
	"""Tests for artifact type inference."""

	@pytest.mark.parametrize("path,expected", [
		("src/app.py", ArtifactType.CODE),
		("web/index.tsx", ArtifactType.CODE),
		("README.md", ArtifactType.DOC),
		("docs/guide.rst", ArtifactType.DOC),
		("pyproject.toml", ArtifactType.CONFIG),
		(".github/workflows/ci.yml", ArtifactType.CONFIG),
		("tests/test_app.py", ArtifactType.TEST),
		("test_cli.py", ArtifactType.TEST),
		("src/app.spec.ts", ArtifactType.TEST),
		("src/__tests__/app.js", ArtifactType.TEST),
		("assets/logo.png", ArtifactType.OTHER),
	])
	def test_paths(self, path, expected):
		assert infer_artifact_type(path) == expected


class TestOutputParsing:
	"""Tests for parsing what the CLI prints."""

	def test_extract_file_blocks(self):
		text = (
			"I made two changes.\n"
			"[FILE: src/app.py]\n[CONTENT]\nprint('hi')\n[/CONTENT]\n"
			"[FILE: tests/test_app.py]\n[CONTENT]\ndef test_app():\n    pass\n[/CONTENT]\n"
		)

		artifacts = ClaudeCodeAgent.extract_artifacts(text)

		assert [(a.path, a.type) for a in artifacts] == [
			("src/app.py", ArtifactType.CODE),
			("tests/test_app.py", ArtifactType.TEST),
		]
		assert artifacts[0].content == "print('hi')"

	def test_json_envelope(self, tmp_path):
		agent = ClaudeCodeAgent(tmp_path)
		raw = json.dumps({
			"type": "result",
			"result": "Task completed.",
			"is_error": False,
			"total_cost_usd": 0.12,
			"usage": {"input_tokens": 100, "cache_read_input_tokens": 50, "output_tokens": 25},
		})

		text, usage, is_error = agent._parse_cli_output(raw)

		assert text == "Task completed."
		assert is_error is False
		assert usage.prompt_tokens == 150
		assert usage.completion_tokens == 25
		assert usage.total_tokens == 175
		assert usage.estimated_cost == 0.12

	def test_plain_text_passes_through(self, tmp_path):
		text, usage, is_error = ClaudeCodeAgent(tmp_path)._parse_cli_output("just text")

		assert text == "just text"
		assert usage.total_tokens == 0
		assert is_error is False

	def test_session_end_phrases(self):
		assert detect_session_end("OK, the task is complete.") is True
		assert detect_session_end("Still working on the parser") is False


class TestPromptAndCommand:
	"""Tests for how the CLI is invoked."""

	def test_prompt_includes_previews(self, tmp_path):
		agent = ClaudeCodeAgent(tmp_path)
		context = ExecutionContext(
			working_directory=str(tmp_path),
			previous_artifacts=[ArtifactPreview(path="src/app.py", content="print('hi')")],
		)

		prompt = agent.build_prompt("Add a health endpoint", context)

		assert "Task: Add a health endpoint" in prompt
		assert "File: src/app.py" in prompt
		assert "[FILE: path/to/file]" in prompt

	def test_command_flags(self, tmp_path):
		agent = ClaudeCodeAgent(tmp_path, AgentSettings(model="sonnet", max_turns=12, skip_permissions=False))

		cmd = agent._command("do it")

		assert cmd == ["claude", "--print", "--output-format", "json", "--model", "sonnet", "--max-turns", "12", "do it"]


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as the CLI")
class TestExecute:
	"""Tests running a stand-in CLI as a subprocess."""

	@pytest.mark.asyncio
	async def test_validate_environment(self, tmp_path):
		agent = ClaudeCodeAgent(tmp_path, AgentSettings(command=fake_cli(tmp_path, "")))
		assert await agent.validate_environment() is True

	@pytest.mark.asyncio
	async def test_validate_environment_missing_cli(self, tmp_path):
		agent = ClaudeCodeAgent(tmp_path, AgentSettings(command=str(tmp_path / "nope")))
		assert await agent.validate_environment() is False

	@pytest.mark.asyncio
	async def test_validate_environment_missing_directory(self, tmp_path):
		agent = ClaudeCodeAgent(tmp_path / "missing", AgentSettings(command=fake_cli(tmp_path, "")))
		assert await agent.validate_environment() is False

	@pytest.mark.asyncio
	async def test_execute_collects_artifacts(self, tmp_path):
		envelope = json.dumps({
			"result": "Done.\n[FILE: src/app.py]\n[CONTENT]\nprint('hi')\n[/CONTENT]\nTask completed.",
			"usage": {"input_tokens": 10, "output_tokens": 5},
		})
		settings = AgentSettings(command=fake_cli(tmp_path, envelope), track_git_changes=False)
		agent = ClaudeCodeAgent(tmp_path, settings)
		context = ExecutionContext(working_directory=str(tmp_path), environment={"CI_MARKER": "injected"})

		result = await agent.execute("Write the app", context)

		assert result.success is True
		assert result.session_ended is True
		assert [a.path for a in result.artifacts] == ["src/app.py"]
		assert result.token_usage.total_tokens == 15
		assert (tmp_path / "env.txt").read_text().strip() == "injected"
		assert "--dangerously-skip-permissions" in (tmp_path / "argv.txt").read_text()

	@pytest.mark.asyncio
	async def test_nonzero_exit_is_unsuccessful_result(self, tmp_path):
		settings = AgentSettings(command=fake_cli(tmp_path, "partial", exit_code=3), track_git_changes=False)
		agent = ClaudeCodeAgent(tmp_path, settings)

		result = await agent.execute("Write the app", ExecutionContext(working_directory=str(tmp_path)))

		assert result.success is False
		assert result.error == "Exit code 3"

	@pytest.mark.asyncio
	async def test_missing_cli_raises(self, tmp_path):
		agent = ClaudeCodeAgent(tmp_path, AgentSettings(command=str(tmp_path / "nope")))

		with pytest.raises(AgentExecutionError) as exc_info:
			await agent.execute("x", ExecutionContext(working_directory=str(tmp_path)))

		assert exc_info.value.code == ErrorCode.AGENT_UNAVAILABLE

	@pytest.mark.asyncio
	async def test_invalid_utf8_output_is_replaced(self, tmp_path):
		"""Undecodable CLI bytes should not fail the step."""
		settings = AgentSettings(command=fake_cli(tmp_path, ""), track_git_changes=False)
		(tmp_path / "cli_output.txt").write_bytes(b"caf\xe9 latin-1 output\n")
		agent = ClaudeCodeAgent(tmp_path, settings)

		result = await agent.execute("Write the app", ExecutionContext(working_directory=str(tmp_path)))

		assert result.success is True
		assert "caf� latin-1 output" in result.output
