"""
Mission Models - Pydantic schemas for missions and their Definition of Done.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


class DoDPriority(str, Enum):
	"""Priority tier of a Definition-of-Done criterion."""
	CRITICAL = "critical"
	HIGH = "high"
	MEDIUM = "medium"
	LOW = "low"


PRIORITY_ORDER = (DoDPriority.CRITICAL, DoDPriority.HIGH, DoDPriority.MEDIUM, DoDPriority.LOW)


class DoDCriterion(BaseModel):
	"""A single measurable criterion the mission must satisfy."""
	id: str = Field(description="Unique within the mission")
	description: str
	measurable: bool = Field(default=True)
	priority: DoDPriority = Field(default=DoDPriority.MEDIUM)
	completed: bool = Field(default=False)
	completed_at: Optional[datetime] = Field(default=None)
	evidence: Optional[str] = Field(default=None)

	@model_validator(mode="after")
	def _stamp_completion(self) -> "DoDCriterion":
		if self.completed and self.completed_at is None:
			self.completed_at = utcnow()
		return self


class Mission(BaseModel):
	"""The unit of work: a description plus an ordered set of DoD criteria."""
	id: str
	repository: str
	title: str
	description: str = Field(default="")
	definition_of_done: list[DoDCriterion] = Field(default_factory=list)
	context: Optional[str] = Field(default=None)
	constraints: Optional[list[str]] = Field(default=None)
	created_at: datetime = Field(default_factory=utcnow)
	started_at: Optional[datetime] = Field(default=None)
	completed_at: Optional[datetime] = Field(default=None)

	@model_validator(mode="after")
	def _unique_criterion_ids(self) -> "Mission":
		seen: set[str] = set()
		for criterion in self.definition_of_done:
			if criterion.id in seen:
				raise ValueError(f"Duplicate criterion id: {criterion.id}")
			seen.add(criterion.id)
		return self

	def get_criterion(self, criterion_id: str) -> Optional[DoDCriterion]:
		for criterion in self.definition_of_done:
			if criterion.id == criterion_id:
				return criterion
		return None


class MissionProgress(BaseModel):
	"""Snapshot of completion state computed by the progress tracker."""
	mission_id: str
	total_criteria: int
	completed_criteria: int
	critical_criteria: int
	critical_completed: int
	completion_percentage: int
	current_phase: str
	estimated_time_remaining: Optional[float] = None
