"""
Session Models - Pydantic schemas for resumable orchestration sessions.

A SessionState is one resumable execution attempt against a Mission. It is
serialized with model_dump_json() so every datetime round-trips exactly.
"""

import hashlib
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..missions.models import utcnow


def new_id() -> str:
	return str(uuid.uuid4())


class SessionPhase(str, Enum):
	"""Control-loop state."""
	INITIALIZATION = "initialization"
	PLANNING = "planning"
	EXECUTION = "execution"
	VALIDATION = "validation"
	COMPLETION = "completion"
	ERROR_RECOVERY = "error_recovery"


class ArtifactType(str, Enum):
	"""Kind of file produced by the coding agent."""
	CODE = "code"
	DOC = "doc"
	TEST = "test"
	CONFIG = "config"
	OTHER = "other"

	@classmethod
	def _missing_(cls, value):
		if isinstance(value, str):
			lowered = value.lower()
			if lowered in ("documentation", "docs"):
				return cls.DOC
			for member in cls:
				if member.value == lowered:
					return member
		return cls.OTHER


class Artifact(BaseModel):
	"""A versioned file produced during a session."""
	id: str = Field(default_factory=new_id)
	type: ArtifactType = Field(default=ArtifactType.OTHER)
	path: str
	content: str = Field(default="")
	version: int = Field(default=1, ge=1, description="Per-path counter, starting at 1")
	created_at: datetime = Field(default_factory=utcnow)
	updated_at: datetime = Field(default_factory=utcnow)
	checksum: Optional[str] = Field(default=None)

	@staticmethod
	def compute_checksum(content: str) -> str:
		return hashlib.sha256(content.encode("utf-8")).hexdigest()


class SessionError(BaseModel):
	"""An error caught and recorded against a session. Never auto-resolved."""
	id: str = Field(default_factory=new_id)
	timestamp: datetime = Field(default_factory=utcnow)
	type: str
	message: str
	stack: Optional[str] = Field(default=None)
	context: dict[str, Any] = Field(default_factory=dict)
	resolved: bool = Field(default=False)
	resolution: Optional[str] = Field(default=None)


class SessionState(BaseModel):
	"""Durable state of one orchestration session."""
	session_id: str = Field(default_factory=new_id)
	mission_id: str
	repository: str
	instance_id: str = Field(default="")
	current_phase: SessionPhase = Field(default=SessionPhase.INITIALIZATION)
	completed_tasks: list[str] = Field(default_factory=list)
	pending_tasks: list[str] = Field(default_factory=list)
	artifacts: list[Artifact] = Field(default_factory=list)
	errors: list[SessionError] = Field(default_factory=list)
	iterations: int = Field(default=0, ge=0)
	timestamp: datetime = Field(default_factory=utcnow, description="Session creation time")
	last_checkpoint: Optional[datetime] = Field(default=None)
	metadata: dict[str, Any] = Field(default_factory=dict)

	def next_artifact_version(self, path: str) -> int:
		"""Version the next artifact written to `path` should get."""
		return sum(1 for a in self.artifacts if a.path == path) + 1

	def unresolved_errors(self) -> list[SessionError]:
		return [e for e in self.errors if not e.resolved]
