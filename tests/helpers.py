"""Shared test fixtures and helpers for mission-orchestrator tests."""

import subprocess
from typing import Callable, Optional, Sequence, Union

from mission_orchestrator.errors import GitHubError
from mission_orchestrator.github_client import GitHubClient, IssueData, PullRequestInfo
from mission_orchestrator.llm import LLMClient, LLMResponse, TokenUsage
from mission_orchestrator.missions.models import DoDCriterion, DoDPriority, Mission
from mission_orchestrator.orchestrator.agent import (
	AgentArtifact,
	AgentResult,
	CodingAgent,
	ExecutionContext,
)
from mission_orchestrator.orchestrator.oracle import (
	ANALYSIS_SYSTEM_PROMPT,
	PLANNING_SYSTEM_PROMPT,
	RECOVERY_SYSTEM_PROMPT,
	VALIDATION_SYSTEM_PROMPT,
)
from mission_orchestrator.sessions.models import ArtifactType

ANALYSIS_JSON = '{"currentStatus": "On track", "blockers": [], "recommendations": [], "nextSteps": ["Implement"], "confidence": 0.8}'
VALIDATION_PASS = '{"completed": true, "evidence": "All checks pass", "confidence": 0.9}'
VALIDATION_FAIL = '{"completed": false, "reason": "Tests still failing", "confidence": 0.9}'
RECOVERY_OK = '{"canRecover": true, "strategy": "Retry", "recoveryAction": "Reinstall dependencies", "reason": "Transient"}'
RECOVERY_GIVE_UP = '{"canRecover": false, "reason": "Repository is unusable"}'

Reply = Union[str, BaseException, Callable[[str], str], list]


def make_mission(
	priorities: Sequence[DoDPriority] = (DoDPriority.CRITICAL, DoDPriority.CRITICAL),
	mission_id: str = "mission-1",
	repository: str = "/tmp/mission-repo",
	completed: Sequence[int] = (),
) -> Mission:
	"""Create a Mission with one criterion per priority, ids {mission_id}-dod-{index}."""
	return Mission(
		id=mission_id,
		repository=repository,
		title="Build the widget service",
		description="A small service used by the tests",
		definition_of_done=[
			DoDCriterion(
				id=f"{mission_id}-dod-{index}",
				description=f"Criterion {index} ({priority.value})",
				priority=priority,
				completed=index in completed,
			)
			for index, priority in enumerate(priorities)
		],
	)


class FakeLLMClient(LLMClient):
	"""
	LLM client returning scripted replies per prompt kind.

	A reply may be a string, an exception to raise, a callable taking the
	user message, or a list consumed one entry per call (the last entry
	repeats).
	"""

	def __init__(
		self,
		analysis: Reply = ANALYSIS_JSON,
		plan: Reply = "1. Edit src/app.py\n2. Run the tests",
		validation: Reply = VALIDATION_PASS,
		recovery: Reply = RECOVERY_OK,
	):
		self.replies = {
			"analysis": analysis,
			"plan": plan,
			"validation": validation,
			"recovery": recovery,
		}
		self.calls: list[tuple[str, str]] = []
		self.closed = False

	@staticmethod
	def _kind(system_prompt: str) -> str:
		return {
			ANALYSIS_SYSTEM_PROMPT: "analysis",
			PLANNING_SYSTEM_PROMPT: "plan",
			VALIDATION_SYSTEM_PROMPT: "validation",
			RECOVERY_SYSTEM_PROMPT: "recovery",
		}[system_prompt]

	def calls_of(self, kind: str) -> list[str]:
		return [user for k, user in self.calls if k == kind]

	async def send_message(self, system_prompt: str, user_message: str) -> LLMResponse:
		kind = self._kind(system_prompt)
		self.calls.append((kind, user_message))

		reply = self.replies[kind]
		if isinstance(reply, list):
			reply = reply.pop(0) if len(reply) > 1 else reply[0]
		if isinstance(reply, BaseException):
			raise reply
		if callable(reply):
			reply = reply(user_message)

		return LLMResponse(
			content=reply,
			model="fake/model",
			token_usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
		)

	async def close(self) -> None:
		self.closed = True


class FakeAgent(CodingAgent):
	"""Coding agent with scripted results; records every task it gets."""

	def __init__(
		self,
		environment_ok: bool = True,
		failures: Optional[list[Optional[BaseException]]] = None,
		artifacts: Optional[list[AgentArtifact]] = None,
	):
		self.environment_ok = environment_ok
		self.failures = list(failures or [])
		self.artifacts = artifacts
		self.tasks: list[str] = []
		self.contexts: list[ExecutionContext] = []
		self.started_with: Optional[str] = None
		self.ended = False

	async def validate_environment(self) -> bool:
		return self.environment_ok

	async def start_session(self, session_id: str) -> None:
		self.started_with = session_id

	async def end_session(self) -> None:
		self.ended = True

	async def execute(self, task: str, context: ExecutionContext) -> AgentResult:
		self.tasks.append(task)
		self.contexts.append(context)

		if self.failures:
			failure = self.failures.pop(0)
			if failure is not None:
				raise failure

		artifacts = self.artifacts
		if artifacts is None:
			artifacts = [AgentArtifact(path="src/app.py", content=f"# step {len(self.tasks)}\n", type=ArtifactType.CODE)]

		return AgentResult(
			success=True,
			output="Task completed",
			artifacts=list(artifacts),
			session_ended=True,
			token_usage=TokenUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150),
		)


class FakeGitHubClient(GitHubClient):
	"""GitHub client serving one issue; records comments and pull requests."""

	def __init__(self, issue: Optional[IssueData] = None, repo_name: str = "acme/widgets"):
		super().__init__(repo_name, token="fake-token")
		self.issue = issue or IssueData(
			number=7,
			title="[CCO] Add a health endpoint",
			body="## Objective\nExpose service health.\n\n- [ ] GET /health returns 200\n- [ ] Tests cover /health\n",
			labels=["enhancement"],
			url="https://github.com/acme/widgets/issues/7",
		)
		self.comments: list[tuple[int, str]] = []
		self.pull_requests: list[dict] = []

	def get_issue(self, number: int) -> IssueData:
		if number != self.issue.number:
			raise GitHubError(f"Cannot read issue #{number} in {self.repo_name}: 404")
		return self.issue

	def add_comment(self, number: int, body: str) -> bool:
		self.comments.append((number, body))
		return True

	def create_pull_request(self, title, body, head, base, labels=None) -> PullRequestInfo:
		self.pull_requests.append({"title": title, "body": body, "head": head, "base": base, "labels": labels})
		return PullRequestInfo(number=41, url="https://github.com/acme/widgets/pull/41")


class RecordingGit:
	"""Stands in for subprocess.run in GitWorkspace; records every git call."""

	def __init__(self, other_changes: bool = True, existing_branches: Sequence[str] = (), fail_on: Optional[str] = None):
		self.other_changes = other_changes
		self.staged = False
		self.existing_branches = set(existing_branches)
		self.fail_on = fail_on
		self.calls: list[list[str]] = []

	def commands(self, name: str) -> list[list[str]]:
		return [call[1:] for call in self.calls if call[1] == name]

	def __call__(self, cmd, **kwargs) -> subprocess.CompletedProcess:
		self.calls.append(list(cmd))
		args = cmd[1:]
		returncode = 0
		if args[0] == self.fail_on:
			return subprocess.CompletedProcess(cmd, 1, stdout="", stderr=f"fatal: {args[0]} failed")
		if args[:2] == ["rev-parse", "--verify"]:
			returncode = 0 if args[-1].removeprefix("refs/heads/") in self.existing_branches else 1
		elif args[:2] == ["diff", "--cached"]:
			returncode = 1 if self.staged else 0
		elif args[0] == "commit":
			self.staged = False
		elif args[0] == "add":
			# `add -A` only finds something when files outside the artifacts changed
			self.staged = self.staged or args[1] == "--" or self.other_changes
		return subprocess.CompletedProcess(cmd, returncode, stdout="", stderr="")
