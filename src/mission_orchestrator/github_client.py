"""GitHub API client for issue missions and pull requests."""

import logging
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from github import Auth, Github
from github.GithubException import GithubException

from .errors import ErrorCode, GitHubError

logger = logging.getLogger(__name__)

_REMOTE_SLUG = re.compile(r"github\.com[:/]([^/\s]+)/([^/\s]+?)(?:\.git)?/?$")


@dataclass
class IssueData:
	"""The parts of an issue a mission is built from."""
	number: int
	title: str
	body: str
	labels: list[str] = field(default_factory=list)
	author: str = ""
	url: str = ""
	created_at: Optional[datetime] = None


@dataclass
class PullRequestInfo:
	number: int
	url: str


def parse_repo_slug(remote_url: str) -> Optional[str]:
	"""`owner/repo` from an HTTPS or SSH GitHub remote URL, else None."""
	match = _REMOTE_SLUG.search(remote_url.strip())
	if not match:
		return None
	return f"{match.group(1)}/{match.group(2)}"


def detect_repo_slug(repository: str | Path) -> Optional[str]:
	"""Read the `origin` remote of a local checkout."""
	try:
		result = subprocess.run(
			["git", "remote", "get-url", "origin"],
			cwd=str(repository),
			capture_output=True,
			text=True,
			timeout=10,
		)
	except (OSError, subprocess.TimeoutExpired) as e:
		logger.debug(f"Could not read git remote in {repository}: {e}")
		return None
	if result.returncode != 0:
		return None
	return parse_repo_slug(result.stdout)


class GitHubClient:
	"""
	Thin PyGithub wrapper for one repository.

	Usage:
		client = GitHubClient("owner/repo", token)
		issue = client.get_issue(42)
	"""

	def __init__(self, repo_name: str, token: str = "", github: Optional[Github] = None):
		"""
		Args:
			repo_name: Full name, `owner/repo`
			token: Personal access token (required unless `github` is given)
			github: Preconfigured PyGithub instance, mainly for tests
		"""
		if "/" not in repo_name:
			raise GitHubError(f"Repository must be in owner/repo form, got {repo_name!r}")
		self.repo_name = repo_name
		self._token = token
		self._github = github
		self._repo = None

	def _get_github(self) -> Github:
		if self._github is None:
			if not self._token:
				raise GitHubError(
					"GitHub token not configured",
					code=ErrorCode.GITHUB_AUTH_MISSING,
					suggestion="Set GITHUB_TOKEN (or GH_TOKEN) or github.token in config.toml.",
				)
			self._github = Github(auth=Auth.Token(self._token))
		return self._github

	def _get_repo(self):
		if self._repo is None:
			try:
				self._repo = self._get_github().get_repo(self.repo_name)
			except GithubException as e:
				raise GitHubError(f"Cannot open repository {self.repo_name}: {e}") from e
		return self._repo

	def get_issue(self, number: int) -> IssueData:
		"""
		Fetch one issue.

		Raises:
			GitHubError: If the issue cannot be read or is a pull request
		"""
		try:
			issue = self._get_repo().get_issue(number)
		except GithubException as e:
			raise GitHubError(f"Cannot read issue #{number} in {self.repo_name}: {e}") from e

		if issue.pull_request is not None:
			raise GitHubError(f"#{number} in {self.repo_name} is a pull request, not an issue")

		logger.info(f"Fetched issue #{number}: {issue.title}")
		return IssueData(
			number=issue.number,
			title=issue.title,
			body=issue.body or "",
			labels=[label.name for label in issue.labels],
			author=issue.user.login if issue.user else "",
			url=issue.html_url,
			created_at=issue.created_at,
		)

	def add_comment(self, number: int, body: str) -> bool:
		"""Comment on an issue or PR. Failures are logged, not raised."""
		try:
			self._get_repo().get_issue(number).create_comment(body)
			return True
		except (GithubException, GitHubError) as e:
			logger.error(f"Error commenting on #{number}: {e}")
			return False

	def create_pull_request(
		self,
		title: str,
		body: str,
		head: str,
		base: str,
		labels: Optional[list[str]] = None,
	) -> PullRequestInfo:
		"""
		Open a pull request from `head` into `base`.

		Labels that cannot be applied are logged and skipped.

		Raises:
			GitHubError: If the pull request cannot be created
		"""
		try:
			pr = self._get_repo().create_pull(title=title, body=body, head=head, base=base)
		except GithubException as e:
			raise GitHubError(f"Cannot open pull request {head} -> {base}: {e}") from e

		if labels:
			try:
				pr.add_to_labels(*labels)
			except GithubException as e:
				logger.warning(f"Could not label PR #{pr.number}: {e}")

		logger.info(f"Opened pull request #{pr.number}: {pr.html_url}")
		return PullRequestInfo(number=pr.number, url=pr.html_url)
