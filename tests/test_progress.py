"""Tests for the progress tracker's completion policy and progress math."""

from datetime import datetime, timedelta, timezone

import pytest

from mission_orchestrator.errors import CriterionNotFoundError
from mission_orchestrator.missions.models import DoDPriority
from mission_orchestrator.orchestrator.progress import ProgressTracker, completion_percentage, phase_label
from mission_orchestrator.sessions.models import SessionState

from .helpers import make_mission

C, H, M, L = DoDPriority.CRITICAL, DoDPriority.HIGH, DoDPriority.MEDIUM, DoDPriority.LOW


@pytest.fixture
def tracker():
	return ProgressTracker()


class TestCalculateProgress:
	"""Tests for percentage and phase labels."""

	@pytest.mark.parametrize("total,completed,expected", [
		(3, 1, 33),
		(4, 2, 50),
		(0, 0, 0),
		(3, 2, 67),
		(8, 1, 13),  # 12.5 rounds half-up
		(8, 3, 38),  # 37.5 rounds half-up
		(5, 5, 100),
	])
	def test_percentage(self, tracker, total, completed, expected):
		mission = make_mission([M] * total, completed=range(completed))
		progress = tracker.calculate_progress(mission)

		assert progress.total_criteria == total
		assert progress.completed_criteria == completed
		assert progress.completion_percentage == expected

	@pytest.mark.parametrize("pct,label", [
		(0, "Initialization"),
		(1, "Early Development"),
		(24, "Early Development"),
		(25, "Core Implementation"),
		(49, "Core Implementation"),
		(50, "Feature Completion"),
		(74, "Feature Completion"),
		(75, "Final Validation"),
		(99, "Final Validation"),
		(100, "Complete"),
	])
	def test_phase_labels(self, pct, label):
		assert phase_label(pct) == label

	def test_critical_counts(self, tracker):
		mission = make_mission([C, C, H, L], completed=[1, 2])
		progress = tracker.calculate_progress(mission)

		assert progress.critical_criteria == 2
		assert progress.critical_completed == 1
		assert progress.current_phase == "Feature Completion"

	def test_completion_percentage_of_zero_total(self):
		assert completion_percentage(0, 0) == 0


class TestCheckCompletion:
	"""Tests for the two-tier completion policy."""

	def test_empty_mission_never_complete(self, tracker):
		assert tracker.check_completion(make_mission([])) is False

	def test_all_complete(self, tracker):
		mission = make_mission([C, H, M, L], completed=range(4))
		assert tracker.check_completion(mission) is True

	def test_incomplete_critical_blocks(self, tracker):
		mission = make_mission([C, H, M, L], completed=[1, 2, 3])
		assert tracker.check_completion(mission) is False

	def test_critical_and_high_suffice(self, tracker):
		mission = make_mission([C, H, M, L], completed=[0, 1])
		assert tracker.check_completion(mission) is True

	def test_incomplete_high_blocks(self, tracker):
		mission = make_mission([C, H, M], completed=[0, 2])
		assert tracker.check_completion(mission) is False

	def test_only_low_tiers_require_everything(self, tracker):
		assert tracker.check_completion(make_mission([M, L], completed=[0])) is False
		assert tracker.check_completion(make_mission([M, L], completed=[0, 1])) is True


class TestMarkCriterionComplete:
	"""Tests for marking criteria complete."""

	def test_returns_copy_and_leaves_others_untouched(self, tracker):
		mission = make_mission([C, H, M])
		updated = tracker.mark_criterion_complete(mission, "mission-1-dod-1", evidence="tests pass")

		target = updated.get_criterion("mission-1-dod-1")
		assert target.completed is True
		assert target.completed_at is not None
		assert target.evidence == "tests pass"

		for other_id in ("mission-1-dod-0", "mission-1-dod-2"):
			other = updated.get_criterion(other_id)
			assert other.completed is False
			assert other.completed_at is None
			assert other.evidence is None

		# The input mission is not mutated
		assert mission.get_criterion("mission-1-dod-1").completed is False

	def test_unknown_criterion_raises(self, tracker):
		with pytest.raises(CriterionNotFoundError):
			tracker.mark_criterion_complete(make_mission([C]), "nope")


class TestCriterionSelection:
	"""Tests for next-criterion selection and filters."""

	def test_critical_before_everything_else(self, tracker):
		mission = make_mission([L, H, C, M, C])
		assert tracker.get_next_priority_criterion(mission).id == "mission-1-dod-2"

	def test_stable_within_tier(self, tracker):
		mission = make_mission([H, M, H], completed=[])
		assert tracker.get_next_priority_criterion(mission).id == "mission-1-dod-0"

		mission = tracker.mark_criterion_complete(mission, "mission-1-dod-0")
		assert tracker.get_next_priority_criterion(mission).id == "mission-1-dod-2"

	def test_none_when_all_done(self, tracker):
		mission = make_mission([C, L], completed=[0, 1])
		assert tracker.get_next_priority_criterion(mission) is None

	def test_pending_and_completed_preserve_order(self, tracker):
		mission = make_mission([L, C, M, H], completed=[1, 3])

		assert [c.id for c in tracker.get_pending_criteria(mission)] == ["mission-1-dod-0", "mission-1-dod-2"]
		assert [c.id for c in tracker.get_completed_criteria(mission)] == ["mission-1-dod-1", "mission-1-dod-3"]


class TestEstimateTimeRemaining:
	"""Tests for time estimates."""

	def _session(self, created: datetime) -> SessionState:
		return SessionState(mission_id="mission-1", repository="/tmp/repo", timestamp=created)

	def test_zero_when_nothing_pending(self, tracker):
		mission = make_mission([C], completed=[0])
		assert tracker.estimate_time_remaining(mission, self._session(datetime.now(timezone.utc)), 60) == 0

	def test_uses_average_before_any_completion(self, tracker):
		mission = make_mission([C, H, M])
		assert tracker.estimate_time_remaining(mission, self._session(datetime.now(timezone.utc)), 60) == 180

	def test_extrapolates_from_elapsed_time(self, tracker):
		created = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
		now = created + timedelta(minutes=20)
		mission = make_mission([C, H, M, L], completed=[0, 1])

		# 1200s for 2 criteria -> 600s each, 2 pending
		assert tracker.estimate_time_remaining(mission, self._session(created), 60, now=now) == 1200


class TestProgressReport:
	"""Tests for the plain-text report."""

	def test_report_lists_criteria_and_errors(self, tracker):
		from mission_orchestrator.sessions.models import SessionError

		mission = make_mission([C, L], completed=[0])
		session = SessionState(mission_id=mission.id, repository=mission.repository, iterations=3)
		session.errors.append(SessionError(type="AgentExecutionError", message="boom"))

		report = tracker.generate_progress_report(mission, session)

		assert "Mission: Build the widget service" in report
		assert "Iterations: 3" in report
		assert "Progress: 50% Complete" in report
		assert "✓ [critical] Criterion 0 (critical)" in report
		assert "○ [low] Criterion 1 (low)" in report
		assert "Unresolved Errors: 1" in report
