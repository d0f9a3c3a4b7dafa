"""
Coding Agent - Executes action plans against the mission repository.

CodingAgent is the interface the orchestrator drives. ClaudeCodeAgent
implements it by running the claude CLI in print mode inside the
repository and collecting the files it produced.
"""

import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..config import AgentSettings
from ..errors import AgentExecutionError, ErrorCode
from ..llm import TokenUsage
from ..sessions.models import ArtifactType

FILE_BLOCK = re.compile(r"\[FILE:\s*(.*?)\]\s*\n\[CONTENT\]\n?(.*?)\[/CONTENT\]", re.DOTALL)

SESSION_END_PHRASES = (
	"task completed",
	"task is complete",
	"finished the task",
	"stopping here",
	"pausing here",
	"session end",
	"need more information",
	"awaiting further instructions",
)

_EXTENSION_TYPES = {
	".py": ArtifactType.CODE,
	".ts": ArtifactType.CODE,
	".tsx": ArtifactType.CODE,
	".js": ArtifactType.CODE,
	".jsx": ArtifactType.CODE,
	".go": ArtifactType.CODE,
	".rs": ArtifactType.CODE,
	".java": ArtifactType.CODE,
	".c": ArtifactType.CODE,
	".cpp": ArtifactType.CODE,
	".h": ArtifactType.CODE,
	".sh": ArtifactType.CODE,
	".md": ArtifactType.DOC,
	".rst": ArtifactType.DOC,
	".txt": ArtifactType.DOC,
	".json": ArtifactType.CONFIG,
	".yaml": ArtifactType.CONFIG,
	".yml": ArtifactType.CONFIG,
	".toml": ArtifactType.CONFIG,
	".ini": ArtifactType.CONFIG,
	".cfg": ArtifactType.CONFIG,
}


def infer_artifact_type(path: str) -> ArtifactType:
	"""Guess an artifact's type from its path."""
	p = Path(path)
	name = p.name.lower()
	if (
		name.startswith("test_")
		or re.search(r"[._](test|spec)\.[a-z]+$", name)
		or "tests" in p.parts
		or "__tests__" in p.parts
	):
		return ArtifactType.TEST
	return _EXTENSION_TYPES.get(p.suffix.lower(), ArtifactType.OTHER)


def detect_session_end(text: str) -> bool:
	lowered = text.lower()
	return any(phrase in lowered for phrase in SESSION_END_PHRASES)


@dataclass
class AgentArtifact:
	"""A file produced by the agent in one execution."""
	path: str
	content: str
	type: ArtifactType = ArtifactType.OTHER


@dataclass
class AgentResult:
	"""Outcome of one agent execution."""
	success: bool
	output: str
	artifacts: list[AgentArtifact] = field(default_factory=list)
	session_ended: bool = False
	token_usage: TokenUsage = field(default_factory=TokenUsage)
	error: Optional[str] = None


@dataclass
class ArtifactPreview:
	"""Truncated view of an earlier artifact passed back to the agent."""
	path: str
	content: str


@dataclass
class ExecutionContext:
	"""Where and with what the agent runs."""
	working_directory: str
	environment: dict[str, str] = field(default_factory=dict)
	previous_artifacts: list[ArtifactPreview] = field(default_factory=list)


class CodingAgent(ABC):
	"""Interface of the collaborator that does the actual coding work."""

	@abstractmethod
	async def execute(self, task: str, context: ExecutionContext) -> AgentResult:
		"""Carry out an action plan and report what was produced."""

	@abstractmethod
	async def validate_environment(self) -> bool:
		"""Check the agent can run at all."""

	async def start_session(self, session_id: str) -> None:
		"""Called once before the first iteration of a run."""

	async def end_session(self) -> None:
		"""Called once after the last iteration of a run."""


class ClaudeCodeAgent(CodingAgent):
	"""
	Coding agent backed by the claude CLI.

	Each execution runs `claude --print --output-format json` in the
	working directory. Artifacts come from [FILE]/[CONTENT] blocks in the
	reply plus any files git reports as changed.
	"""

	def __init__(
		self,
		project_path: str | Path,
		settings: Optional[AgentSettings] = None,
		logger: Optional[logging.Logger] = None,
	):
		self.project_path = Path(project_path)
		self.settings = settings or AgentSettings()
		self.logger = logger or logging.getLogger(__name__)
		self.current_session: Optional[str] = None

	async def start_session(self, session_id: str) -> None:
		self.current_session = session_id
		self.logger.info(f"Started Claude Code session {session_id}")

	async def end_session(self) -> None:
		self.logger.info(f"Ended Claude Code session {self.current_session}")
		self.current_session = None

	async def validate_environment(self) -> bool:
		"""Check the working directory exists and the claude CLI answers --version."""
		if not self.project_path.is_dir():
			self.logger.error(f"Working directory does not exist: {self.project_path}")
			return False

		try:
			process = await asyncio.create_subprocess_exec(
				self.settings.command,
				"--version",
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
			)
			stdout, _ = await asyncio.wait_for(process.communicate(), timeout=30)
		except FileNotFoundError:
			self.logger.error(f"Claude CLI not found: {self.settings.command}")
			return False
		except asyncio.TimeoutError:
			process.kill()
			await process.wait()
			self.logger.error("Claude CLI did not answer --version within 30s")
			return False

		if process.returncode != 0:
			self.logger.error(f"Claude CLI --version exited with {process.returncode}")
			return False

		version = stdout.decode(errors="replace").strip()
		self.logger.info(f"Claude CLI available: {version}")
		return True

	def build_prompt(self, task: str, context: ExecutionContext) -> str:
		lines = [
			f"You are working on the project at {context.working_directory}.",
			f"Session: {self.current_session or 'new'}",
			"",
			f"Task: {task}",
			"",
		]

		if context.previous_artifacts:
			lines.append("Previous artifacts from this session:")
			for artifact in context.previous_artifacts:
				lines.append(f"\nFile: {artifact.path}")
				lines.append(f"Content preview: {artifact.content[:200]}...")
			lines.append("")

		lines.extend([
			"Execute this task by creating or modifying files in the project.",
			"When you complete the task or need to pause, say so clearly.",
			"Also report each file you changed as:",
			"[FILE: path/to/file]",
			"[CONTENT]",
			"file content here",
			"[/CONTENT]",
		])
		return "\n".join(lines)

	def _command(self, prompt: str) -> list[str]:
		cmd = [self.settings.command, "--print", "--output-format", "json"]
		if self.settings.model:
			cmd.extend(["--model", self.settings.model])
		if self.settings.max_turns:
			cmd.extend(["--max-turns", str(self.settings.max_turns)])
		if self.settings.skip_permissions:
			cmd.append("--dangerously-skip-permissions")
		cmd.append(prompt)
		return cmd

	async def execute(self, task: str, context: ExecutionContext) -> AgentResult:
		"""
		Run the claude CLI on an action plan.

		Args:
			task: Action plan text
			context: Working directory, environment and earlier artifacts

		Returns:
			AgentResult; a non-zero exit is reported as success=False

		Raises:
			AgentExecutionError: If the CLI is missing or times out
		"""
		prompt = self.build_prompt(task, context)
		cwd = context.working_directory or str(self.project_path)
		env = None
		if context.environment:
			# Overlay the injected environment on the inherited one so PATH survives
			env = os.environ.copy()
			env.update(context.environment)

		self.logger.info(f"Executing task in {cwd} ({len(task)} chars)")

		try:
			process = await asyncio.create_subprocess_exec(
				*self._command(prompt),
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=cwd,
				env=env,
			)
		except FileNotFoundError as e:
			raise AgentExecutionError(
				f"Claude CLI not found: {self.settings.command}",
				code=ErrorCode.AGENT_UNAVAILABLE,
			) from e

		try:
			stdout, stderr = await asyncio.wait_for(
				process.communicate(),
				timeout=self.settings.timeout,
			)
		except asyncio.TimeoutError as e:
			process.kill()
			await process.wait()
			raise AgentExecutionError(f"Claude CLI timed out after {self.settings.timeout}s") from e

		stdout_text = stdout.decode(errors="replace") if stdout else ""
		stderr_text = stderr.decode(errors="replace") if stderr else ""

		if process.returncode != 0:
			error_msg = stderr_text.strip() or f"Exit code {process.returncode}"
			self.logger.error(f"Claude CLI error: {error_msg}")
			return AgentResult(success=False, output=stdout_text, error=error_msg)

		text, token_usage, is_error = self._parse_cli_output(stdout_text)
		artifacts = self.extract_artifacts(text)

		if self.settings.track_git_changes:
			seen = {a.path for a in artifacts}
			for artifact in await self._changed_files(Path(cwd)):
				if artifact.path not in seen:
					artifacts.append(artifact)

		self.logger.info(f"Claude CLI finished: {len(artifacts)} artifacts, {token_usage.total_tokens} tokens")
		return AgentResult(
			success=not is_error,
			output=text,
			artifacts=artifacts,
			session_ended=detect_session_end(text),
			token_usage=token_usage,
			error=text if is_error else None,
		)

	def _parse_cli_output(self, raw: str) -> tuple[str, TokenUsage, bool]:
		"""Unpack the JSON envelope of --output-format json; plain text passes through."""
		try:
			data = json.loads(raw)
		except ValueError:
			return raw, TokenUsage(), False

		if not isinstance(data, dict):
			return raw, TokenUsage(), False

		usage = data.get("usage") or {}
		prompt_tokens = (
			(usage.get("input_tokens") or 0)
			+ (usage.get("cache_creation_input_tokens") or 0)
			+ (usage.get("cache_read_input_tokens") or 0)
		)
		completion_tokens = usage.get("output_tokens") or 0
		token_usage = TokenUsage(
			prompt_tokens=prompt_tokens,
			completion_tokens=completion_tokens,
			total_tokens=prompt_tokens + completion_tokens,
			estimated_cost=data.get("total_cost_usd") or 0.0,
		)
		return str(data.get("result") or ""), token_usage, bool(data.get("is_error"))

	@staticmethod
	def extract_artifacts(text: str) -> list[AgentArtifact]:
		"""Collect [FILE: path][CONTENT]...[/CONTENT] blocks from agent output."""
		artifacts = []
		for match in FILE_BLOCK.finditer(text):
			path = match.group(1).strip()
			artifacts.append(AgentArtifact(
				path=path,
				content=match.group(2).strip(),
				type=infer_artifact_type(path),
			))
		return artifacts

	async def _changed_files(self, cwd: Path) -> list[AgentArtifact]:
		"""Files git reports as added or modified in the working tree."""
		try:
			process = await asyncio.create_subprocess_exec(
				"git", "status", "--porcelain",
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=str(cwd),
			)
			stdout, _ = await asyncio.wait_for(process.communicate(), timeout=30)
		except (FileNotFoundError, asyncio.TimeoutError) as e:
			self.logger.debug(f"Skipping git change detection: {e!r}")
			return []

		if process.returncode != 0:
			return []

		artifacts = []
		for line in stdout.decode(errors="replace").splitlines():
			if len(line) < 4 or "D" in line[:2]:
				continue
			path = line[3:].strip()
			if " -> " in path:
				path = path.split(" -> ", 1)[1]
			path = path.strip('"')
			file_path = cwd / path
			if not file_path.is_file():
				continue
			try:
				content = file_path.read_text(encoding="utf-8")
			except (OSError, UnicodeDecodeError):
				continue
			artifacts.append(AgentArtifact(path=path, content=content, type=infer_artifact_type(path)))
		return artifacts
