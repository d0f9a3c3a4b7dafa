"""
Errors - Exception hierarchy for mission orchestration.

Every error carries an ErrorCode and a short suggestion shown by the CLI.
Only the LLM client consults is_retryable()/retry_delay(); the control
loop never retries mechanically.
"""

import random
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
	"""Stable error codes."""
	CONFIG_INVALID = "CONFIG_INVALID"

	API_KEY_MISSING = "API_KEY_MISSING"
	API_RATE_LIMIT = "API_RATE_LIMIT"
	API_TIMEOUT = "API_TIMEOUT"
	API_CONNECTION_FAILED = "API_CONNECTION_FAILED"
	API_SERVER_ERROR = "API_SERVER_ERROR"
	API_REQUEST_FAILED = "API_REQUEST_FAILED"

	MISSION_INVALID = "MISSION_INVALID"
	MISSION_PARSE_ERROR = "MISSION_PARSE_ERROR"
	CRITERION_NOT_FOUND = "CRITERION_NOT_FOUND"

	EXECUTION_FAILED = "EXECUTION_FAILED"
	ENVIRONMENT_INVALID = "ENVIRONMENT_INVALID"
	AGENT_UNAVAILABLE = "AGENT_UNAVAILABLE"

	GITHUB_AUTH_MISSING = "GITHUB_AUTH_MISSING"
	GITHUB_REQUEST_FAILED = "GITHUB_REQUEST_FAILED"
	GIT_COMMAND_FAILED = "GIT_COMMAND_FAILED"

	SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
	SESSION_CORRUPTED = "SESSION_CORRUPTED"
	SESSION_SAVE_FAILED = "SESSION_SAVE_FAILED"
	NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"


class OrchestratorError(Exception):
	"""Base class for all orchestration errors."""

	default_code = ErrorCode.EXECUTION_FAILED
	default_suggestion = "Check the logs for more details."

	def __init__(
		self,
		message: str,
		code: Optional[ErrorCode] = None,
		details: Any = None,
		suggestion: Optional[str] = None,
	):
		super().__init__(message)
		self.message = message
		self.code = code or self.default_code
		self.details = details
		self.suggestion = suggestion or self.default_suggestion
		self.timestamp = datetime.now(timezone.utc)

	def to_dict(self) -> dict:
		"""Convert to dictionary for JSON serialization."""
		return {
			"name": type(self).__name__,
			"code": self.code.value,
			"message": self.message,
			"details": self.details,
			"suggestion": self.suggestion,
			"timestamp": self.timestamp.isoformat(),
		}

	def __str__(self) -> str:
		return self.message


class ConfigError(OrchestratorError):
	default_code = ErrorCode.CONFIG_INVALID
	default_suggestion = "Check config.toml and the MISSION_ORCHESTRATOR_* environment variables."


class MissionParseError(OrchestratorError):
	default_code = ErrorCode.MISSION_PARSE_ERROR
	default_suggestion = "Ensure the mission file has a top-level 'mission' key with a definition_of_done list."


class CriterionNotFoundError(OrchestratorError):
	default_code = ErrorCode.CRITERION_NOT_FOUND


class SessionNotFoundError(OrchestratorError):
	default_code = ErrorCode.SESSION_NOT_FOUND
	default_suggestion = "Run 'mission-orchestrator sessions list' to see stored sessions."


class NoActiveSessionError(OrchestratorError):
	"""A session-scoped operation ran before a session was resolved."""
	default_code = ErrorCode.NO_ACTIVE_SESSION


class PersistenceError(OrchestratorError):
	"""The durable session store failed. Never retried by the core."""
	default_code = ErrorCode.SESSION_SAVE_FAILED
	default_suggestion = "Check that the data directory is writable and the sessions database is intact."


class SessionCorruptedError(PersistenceError):
	default_code = ErrorCode.SESSION_CORRUPTED


class EnvironmentValidationError(OrchestratorError):
	default_code = ErrorCode.ENVIRONMENT_INVALID
	default_suggestion = "Run 'mission-orchestrator doctor' and make sure the claude CLI is installed."


class AgentExecutionError(OrchestratorError):
	default_code = ErrorCode.EXECUTION_FAILED


class OracleRequestError(OrchestratorError):
	default_code = ErrorCode.API_REQUEST_FAILED
	default_suggestion = "Verify the oracle provider settings, API key and network connection."


class GitHubError(OrchestratorError):
	default_code = ErrorCode.GITHUB_REQUEST_FAILED
	default_suggestion = "Check GITHUB_TOKEN, the repository name and the issue number."


class GitOperationError(OrchestratorError):
	default_code = ErrorCode.GIT_COMMAND_FAILED
	default_suggestion = "Make sure the mission repository is a git checkout with an 'origin' remote you can push to."


RETRYABLE_CODES = frozenset({
	ErrorCode.API_RATE_LIMIT,
	ErrorCode.API_TIMEOUT,
	ErrorCode.API_CONNECTION_FAILED,
	ErrorCode.API_SERVER_ERROR,
	ErrorCode.AGENT_UNAVAILABLE,
})


def is_retryable(error: BaseException) -> bool:
	"""Whether a collaborator call that raised this error may be retried."""
	return isinstance(error, OrchestratorError) and error.code in RETRYABLE_CODES


def retry_delay(error: BaseException, attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
	"""Exponential backoff with jitter; rate limits wait twice as long."""
	if isinstance(error, OrchestratorError) and error.code == ErrorCode.API_RATE_LIMIT:
		return min(base_delay * (2 ** attempt) * 2, max_delay)
	delay = min(base_delay * (2 ** attempt), max_delay)
	return delay + random.random() * 0.1 * delay
