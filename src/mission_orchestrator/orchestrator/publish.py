"""
Publishing - Turn a finished mission into commits and a pull request.

The branch is created before the run so the agent's edits land on it.
Afterwards the work is committed (one conventional commit per artifact
type with --semantic-commits, otherwise a single commit), pushed to
origin, and opened as a pull request against the base branch.
"""

import logging
import subprocess
from collections import Counter
from pathlib import Path, PurePosixPath
from typing import Callable, Optional

from ..config import GitHubSettings
from ..errors import GitOperationError
from ..github_client import GitHubClient, PullRequestInfo
from ..missions.models import DoDPriority, Mission
from ..sessions.models import Artifact, ArtifactType
from .engine import OrchestrationResult

Runner = Callable[..., subprocess.CompletedProcess]

COMMIT_TYPES = {
	ArtifactType.CODE: ("feat", "implement core functionality"),
	ArtifactType.TEST: ("test", "add test coverage"),
	ArtifactType.DOC: ("docs", "update documentation"),
	ArtifactType.CONFIG: ("chore", "update configuration"),
	ArtifactType.OTHER: ("chore", "update project files"),
}

# Artifacts listed per type in a PR body before the rest are summarized
MAX_LISTED_FILES = 10


def slugify(text: str, limit: int = 30) -> str:
	slug = "".join(ch if ch.isalnum() else "-" for ch in text.lower())
	slug = "-".join(part for part in slug.split("-") if part)
	return slug[:limit].rstrip("-")


def branch_name(prefix: str, mission: Mission, issue_number: Optional[int] = None) -> str:
	if issue_number is not None:
		return f"{prefix}/issue-{issue_number}-{slugify(mission.title)}"
	return f"{prefix}/mission-{mission.id[:8]}-{slugify(mission.title)}"


def commit_scope(paths: list[str]) -> Optional[str]:
	"""Most common top-level directory (looking inside src/), if any."""
	dirs: Counter[str] = Counter()
	for path in paths:
		parts = PurePosixPath(path).parts
		if len(parts) < 2:
			continue
		if parts[0] == "src" and len(parts) > 2:
			dirs[parts[1]] += 1
		elif parts[0] != "src":
			dirs[parts[0]] += 1
	if not dirs:
		return None
	return dirs.most_common(1)[0][0]


def format_commit_message(
	commit_type: str,
	description: str,
	scope: Optional[str] = None,
	body: str = "",
	mission_id: Optional[str] = None,
	issue_number: Optional[int] = None,
) -> str:
	"""Conventional-commit message: `type(scope): description` plus trailers."""
	header = f"{commit_type}({scope}): {description}" if scope else f"{commit_type}: {description}"
	parts = [header]
	if body:
		parts.append(body)
	trailers = []
	if mission_id:
		trailers.append(f"Mission: {mission_id}")
	if issue_number is not None:
		trailers.append(f"Refs: #{issue_number}")
	if trailers:
		parts.append("\n".join(trailers))
	return "\n\n".join(parts)


def latest_artifacts(artifacts: list[Artifact]) -> list[Artifact]:
	"""Newest version of each path, in first-seen order."""
	latest: dict[str, Artifact] = {}
	for artifact in artifacts:
		latest[artifact.path] = artifact
	return list(latest.values())


def format_pull_request_body(result: OrchestrationResult, issue_number: Optional[int] = None) -> str:
	mission = result.mission
	metrics = result.metrics
	lines = [f"## Mission: {mission.title}", ""]
	if mission.description:
		lines += [mission.description, ""]
	if issue_number is not None:
		lines += [f"Fixes #{issue_number}", ""]

	lines.append(f"### Definition of Done ({metrics.completed_criteria}/{metrics.total_criteria})")
	for criterion in mission.definition_of_done:
		lines.append(f"- [{'x' if criterion.completed else ' '}] {criterion.description}")
	lines += [
		"",
		"### Run",
		f"- **Mission ID**: `{mission.id}`",
		f"- **Completion**: {metrics.completion_percentage}%",
		f"- **Iterations**: {metrics.iterations}",
		f"- **Recoveries**: {metrics.recoveries}",
		f"- **Tokens**: {metrics.token_usage.total_tokens:,}",
		f"- **Estimated cost**: ${metrics.token_usage.estimated_cost:.2f}",
	]

	files = latest_artifacts(result.artifacts)
	if files:
		lines += ["", f"### Files ({len(files)})"]
		for artifact_type in ArtifactType:
			group = [a for a in files if a.type == artifact_type]
			if not group:
				continue
			lines.append(f"**{artifact_type.value}**")
			lines += [f"- `{a.path}`" for a in group[:MAX_LISTED_FILES]]
			if len(group) > MAX_LISTED_FILES:
				lines.append(f"- _...and {len(group) - MAX_LISTED_FILES} more_")
	return "\n".join(lines) + "\n"


def pull_request_labels(mission: Mission, result: OrchestrationResult, issue_labels: Optional[list[str]] = None) -> list[str]:
	labels = ["mission-orchestrator"]
	priorities = {c.priority for c in mission.definition_of_done}
	if DoDPriority.CRITICAL in priorities:
		labels.append("priority:critical")
	elif DoDPriority.HIGH in priorities:
		labels.append("priority:high")

	types = {a.type for a in result.artifacts}
	if ArtifactType.TEST in types:
		labels.append("tests")
	if ArtifactType.DOC in types:
		labels.append("documentation")
	labels += issue_labels or []
	return list(dict.fromkeys(labels))


class GitWorkspace:
	"""Git commands in one checkout."""

	def __init__(self, path: str | Path, runner: Runner = subprocess.run, logger: Optional[logging.Logger] = None):
		self.path = Path(path)
		self._runner = runner
		self.logger = logger or logging.getLogger(__name__)

	def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
		try:
			result = self._runner(
				["git", *args],
				cwd=str(self.path),
				capture_output=True,
				text=True,
				timeout=120,
			)
		except (OSError, subprocess.TimeoutExpired) as e:
			raise GitOperationError(f"git {args[0]} failed in {self.path}: {e}") from e
		if check and result.returncode != 0:
			raise GitOperationError(
				f"git {' '.join(args)} exited with {result.returncode}",
				details=(result.stderr or "").strip()[:500],
			)
		return result

	def checkout_branch(self, name: str) -> None:
		"""Switch to `name`, creating it from HEAD if it does not exist yet."""
		exists = self._git("rev-parse", "--verify", "--quiet", f"refs/heads/{name}", check=False).returncode == 0
		if exists:
			self._git("checkout", name)
		else:
			self._git("checkout", "-b", name)
		self.logger.info(f"Working on branch {name}")

	def has_staged_changes(self) -> bool:
		return self._git("diff", "--cached", "--quiet", check=False).returncode != 0

	def stage(self, paths: Optional[list[str]] = None) -> None:
		if paths:
			self._git("add", "--", *paths)
		else:
			self._git("add", "-A")

	def commit(self, message: str) -> bool:
		"""Commit what is staged. Returns False if there was nothing to commit."""
		if not self.has_staged_changes():
			return False
		self._git("commit", "-m", message)
		self.logger.info(f"Committed: {message.splitlines()[0]}")
		return True

	def push(self, branch: str) -> None:
		self._git("push", "-u", "origin", branch)


class PullRequestPublisher:
	"""
	Commits, pushes and opens the pull request for a mission run.

	Usage:
		publisher = PullRequestPublisher(github, GitWorkspace(mission.repository), config.github)
		branch = publisher.prepare_branch(mission, issue_number)
		... run the mission ...
		pr = publisher.publish(result, branch, issue_number)
	"""

	def __init__(
		self,
		github: GitHubClient,
		workspace: GitWorkspace,
		settings: Optional[GitHubSettings] = None,
		semantic_commits: bool = False,
		logger: Optional[logging.Logger] = None,
	):
		self.github = github
		self.workspace = workspace
		self.settings = settings or GitHubSettings()
		self.semantic_commits = semantic_commits
		self.logger = logger or logging.getLogger(__name__)

	def prepare_branch(self, mission: Mission, issue_number: Optional[int] = None) -> str:
		name = branch_name(self.settings.branch_prefix, mission, issue_number)
		self.workspace.checkout_branch(name)
		return name

	def commit_work(self, result: OrchestrationResult, issue_number: Optional[int] = None) -> int:
		"""Commit the run's changes. Returns the number of commits made."""
		mission_id = result.mission.id
		commits = 0

		if self.semantic_commits:
			files = [a for a in latest_artifacts(result.artifacts) if (self.workspace.path / a.path).exists()]
			for artifact_type, (commit_type, description) in COMMIT_TYPES.items():
				paths = [a.path for a in files if a.type == artifact_type]
				if not paths:
					continue
				self.workspace.stage(paths)
				if len(paths) > 1:
					description = f"{description} ({len(paths)} files)"
				body = "\n".join(f"- {p}" for p in paths) if len(paths) <= 5 else f"Modified {len(paths)} files"
				message = format_commit_message(
					commit_type, description, commit_scope(paths), body, mission_id, issue_number
				)
				commits += self.workspace.commit(message)

		# Whatever the artifacts did not cover
		self.workspace.stage()
		leftover = format_commit_message(
			"chore" if self.semantic_commits else "feat",
			"update project files" if self.semantic_commits else f"complete mission: {result.mission.title}",
			mission_id=mission_id,
			issue_number=issue_number,
		)
		commits += self.workspace.commit(leftover)
		return commits

	def publish(
		self,
		result: OrchestrationResult,
		branch: str,
		issue_number: Optional[int] = None,
		issue_labels: Optional[list[str]] = None,
	) -> PullRequestInfo:
		"""
		Commit, push and open the pull request; link it from the issue.

		Raises:
			GitOperationError: If committing or pushing fails
			GitHubError: If the pull request cannot be opened
		"""
		commits = self.commit_work(result, issue_number)
		self.logger.info(f"Made {commits} commit(s) on {branch}")
		self.workspace.push(branch)

		mission = result.mission
		title = f"[#{issue_number}] {mission.title}" if issue_number is not None else mission.title
		pr = self.github.create_pull_request(
			title=title,
			body=format_pull_request_body(result, issue_number),
			head=branch,
			base=self.settings.base_branch,
			labels=pull_request_labels(mission, result, issue_labels),
		)

		if issue_number is not None:
			self.github.add_comment(issue_number, f"Pull request opened: #{pr.number}\n{pr.url}")
		return pr
