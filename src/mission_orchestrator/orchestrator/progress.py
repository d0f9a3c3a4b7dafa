"""
Progress Tracker - Completion policy and progress math for missions.

Stateless: every method is a pure function of its arguments. The only
side effect is logging through the injected logger.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from ..errors import CriterionNotFoundError
from ..missions.models import PRIORITY_ORDER, DoDCriterion, DoDPriority, Mission, MissionProgress, utcnow
from ..sessions.models import SessionState


def completion_percentage(completed: int, total: int) -> int:
	"""Percentage rounded half-up; 0 when there is nothing to complete."""
	if total <= 0:
		return 0
	return int(math.floor(100 * completed / total + 0.5))


def phase_label(percentage: int) -> str:
	if percentage <= 0:
		return "Initialization"
	if percentage < 25:
		return "Early Development"
	if percentage < 50:
		return "Core Implementation"
	if percentage < 75:
		return "Feature Completion"
	if percentage < 100:
		return "Final Validation"
	return "Complete"


class ProgressTracker:
	"""
	Computes progress and decides when a mission is done.

	Completion is two-tier: a mission with every CRITICAL and HIGH
	criterion complete counts as done even if MEDIUM/LOW remain, but an
	incomplete CRITICAL always blocks completion.
	"""

	def __init__(self, logger: Optional[logging.Logger] = None):
		self.logger = logger or logging.getLogger(__name__)

	def calculate_progress(self, mission: Mission) -> MissionProgress:
		"""Snapshot the mission's completion state."""
		criteria = mission.definition_of_done
		total = len(criteria)
		completed = sum(1 for c in criteria if c.completed)
		critical = [c for c in criteria if c.priority == DoDPriority.CRITICAL]
		critical_completed = sum(1 for c in critical if c.completed)

		percentage = completion_percentage(completed, total)
		phase = phase_label(percentage)

		self.logger.debug(
			f"Progress for mission {mission.id}: {completed}/{total} ({percentage}%, {phase})"
		)

		return MissionProgress(
			mission_id=mission.id,
			total_criteria=total,
			completed_criteria=completed,
			critical_criteria=len(critical),
			critical_completed=critical_completed,
			completion_percentage=percentage,
			current_phase=phase,
		)

	def check_completion(self, mission: Mission) -> bool:
		"""
		Decide whether the mission is done.

		Rules, in order:
		1. No criteria: never complete
		2. Any incomplete CRITICAL: not complete
		3. Everything complete: complete
		4. Otherwise complete iff every CRITICAL and HIGH is complete
		"""
		criteria = mission.definition_of_done
		if not criteria:
			return False

		if any(c.priority == DoDPriority.CRITICAL and not c.completed for c in criteria):
			self.logger.debug(f"Mission {mission.id} not complete: critical criteria pending")
			return False

		if all(c.completed for c in criteria):
			self.logger.info(f"Mission {mission.id} complete: all criteria met")
			return True

		upper_tier = [c for c in criteria if c.priority in (DoDPriority.CRITICAL, DoDPriority.HIGH)]
		# No CRITICAL/HIGH criteria at all means full completion is required, handled above
		if not upper_tier:
			return False

		done = all(c.completed for c in upper_tier)
		if done:
			self.logger.info(f"Mission {mission.id} complete: all critical and high priority criteria met")
		return done

	def mark_criterion_complete(
		self,
		mission: Mission,
		criterion_id: str,
		evidence: Optional[str] = None,
	) -> Mission:
		"""
		Return a copy of the mission with one criterion marked complete.

		The input mission is left untouched.

		Raises:
			CriterionNotFoundError: If no criterion has that id
		"""
		if mission.get_criterion(criterion_id) is None:
			raise CriterionNotFoundError(
				f"Criterion {criterion_id} not found in mission {mission.id}",
				details={"mission_id": mission.id, "criterion_id": criterion_id},
			)

		updated = mission.model_copy(deep=True)
		criterion = updated.get_criterion(criterion_id)
		criterion.completed = True
		criterion.completed_at = utcnow()
		if evidence:
			criterion.evidence = evidence

		self.logger.info(f"Criterion {criterion_id} complete: {criterion.description}")
		return updated

	def get_next_priority_criterion(self, mission: Mission) -> Optional[DoDCriterion]:
		"""First incomplete criterion by priority tier, stable within a tier."""
		for priority in PRIORITY_ORDER:
			for criterion in mission.definition_of_done:
				if criterion.priority == priority and not criterion.completed:
					self.logger.debug(f"Next criterion: {criterion.id} [{priority.value}]")
					return criterion
		return None

	def get_pending_criteria(self, mission: Mission) -> list[DoDCriterion]:
		return [c for c in mission.definition_of_done if not c.completed]

	def get_completed_criteria(self, mission: Mission) -> list[DoDCriterion]:
		return [c for c in mission.definition_of_done if c.completed]

	def estimate_time_remaining(
		self,
		mission: Mission,
		session: SessionState,
		avg_time_per_criterion: float,
		now: Optional[datetime] = None,
	) -> float:
		"""
		Estimate seconds until every criterion is complete.

		Args:
			mission: Mission being tracked
			session: Session whose creation time anchors the elapsed time
			avg_time_per_criterion: Fallback seconds per criterion before any completes
			now: Current time (defaults to now, UTC)

		Returns:
			Estimated seconds remaining
		"""
		pending = len(self.get_pending_criteria(mission))
		if pending == 0:
			return 0.0

		completed = len(self.get_completed_criteria(mission))
		if completed == 0:
			return pending * avg_time_per_criterion

		now = now or datetime.now(timezone.utc)
		elapsed = (now - session.timestamp).total_seconds()
		return pending * (elapsed / completed)

	def generate_progress_report(self, mission: Mission, session: SessionState) -> str:
		"""Plain-text progress report for logs and non-rich output."""
		progress = self.calculate_progress(mission)

		lines = [
			"Mission Progress Report",
			"========================",
			"",
			f"Mission: {mission.title}",
			f"Repository: {mission.repository}",
			f"Session: {session.session_id}",
			f"Iterations: {session.iterations}",
			"",
			f"Progress: {progress.completion_percentage}% Complete",
			f"Phase: {progress.current_phase}",
			f"Criteria: {progress.completed_criteria}/{progress.total_criteria}",
			f"Critical: {progress.critical_completed}/{progress.critical_criteria}",
			"",
		]

		completed = self.get_completed_criteria(mission)
		if completed:
			lines.append("Completed Criteria:")
			for criterion in completed:
				lines.append(f"  ✓ [{criterion.priority.value}] {criterion.description}")
				if criterion.completed_at:
					lines.append(f"    Completed: {criterion.completed_at.isoformat()}")
			lines.append("")

		pending = self.get_pending_criteria(mission)
		if pending:
			lines.append("Pending Criteria:")
			for criterion in pending:
				lines.append(f"  ○ [{criterion.priority.value}] {criterion.description}")
			lines.append("")

		unresolved = session.unresolved_errors()
		if unresolved:
			lines.append(f"Unresolved Errors: {len(unresolved)}")

		return "\n".join(lines) + "\n"
