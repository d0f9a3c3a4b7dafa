"""
Orchestrator - The checkpointed control loop that drives a mission to done.

Each iteration moves the session through PLANNING, EXECUTION and
VALIDATION: the oracle analyzes and plans, the coding agent executes, the
oracle judges whether the targeted criterion is now met. A failing step
sends the session to ERROR_RECOVERY, where the oracle decides whether to
inject a recovery action or give up.

The loop stops when the completion policy is satisfied, the iteration
budget is spent, stop() is called, or an error cannot be recovered.
"""

import logging
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..config import OrchestratorSettings
from ..errors import ConfigError, EnvironmentValidationError, NoActiveSessionError, PersistenceError
from ..llm import TokenUsage
from ..missions.models import DoDCriterion, Mission, MissionProgress, utcnow
from ..sessions.manager import SessionManager
from ..sessions.models import Artifact, ArtifactType, SessionError, SessionPhase, SessionState
from .agent import AgentArtifact, ArtifactPreview, CodingAgent, ExecutionContext
from .oracle import DecisionOracle, RecoveryVerdict
from .progress import ProgressTracker

# Errors that end the run without consulting the recovery oracle
FATAL_ERRORS = (NoActiveSessionError, PersistenceError)


@dataclass
class OrchestrationMetrics:
	"""Summary numbers for one orchestrate() call."""
	iterations: int = 0
	completed_criteria: int = 0
	total_criteria: int = 0
	completion_percentage: int = 0
	artifacts_by_type: dict[str, int] = field(default_factory=dict)
	errors: int = 0
	unresolved_errors: int = 0
	recoveries: int = 0
	token_usage: TokenUsage = field(default_factory=TokenUsage)
	duration_seconds: float = 0.0


@dataclass
class OrchestrationResult:
	"""What orchestrate() hands back."""
	success: bool
	mission: Mission
	final_state: SessionState
	metrics: OrchestrationMetrics
	artifacts: list[Artifact] = field(default_factory=list)
	stopped_reason: str = ""


class OrchestrationReporter:
	"""Lifecycle callbacks. The base class ignores everything."""

	def on_session_start(self, mission: Mission, session: SessionState, resumed: bool) -> None:
		pass

	def on_phase_change(self, session: SessionState, phase: SessionPhase) -> None:
		pass

	def on_iteration_complete(self, mission: Mission, session: SessionState, progress: MissionProgress) -> None:
		pass

	def on_criterion_complete(self, criterion: DoDCriterion) -> None:
		pass

	def on_recovery(self, error: BaseException, verdict: RecoveryVerdict) -> None:
		pass

	def on_finish(self, result: OrchestrationResult) -> None:
		pass


class Orchestrator:
	"""
	Drives one mission through repeated plan/execute/validate iterations.

	Usage:
		orchestrator = Orchestrator(mission, oracle, agent, session_manager)
		result = await orchestrator.orchestrate()
	"""

	def __init__(
		self,
		mission: Mission,
		oracle: DecisionOracle,
		agent: CodingAgent,
		session_manager: SessionManager,
		settings: Optional[OrchestratorSettings] = None,
		tracker: Optional[ProgressTracker] = None,
		reporter: Optional[OrchestrationReporter] = None,
		logger: Optional[logging.Logger] = None,
	):
		"""
		Initialize the orchestrator.

		Args:
			mission: Mission to drive; replaced by updated copies as criteria complete
			oracle: Planning/validation/recovery oracle
			agent: Coding agent that executes plans
			session_manager: Durable session storage
			settings: Iteration budget, checkpoint interval and agent environment
			tracker: Completion policy (a default ProgressTracker if omitted)
			reporter: Lifecycle callbacks for user-facing output
			logger: Logger to use (defaults to the module logger)

		Raises:
			ConfigError: If the checkpoint interval or recovery cap is below 1
		"""
		self.mission = mission
		self.oracle = oracle
		self.agent = agent
		self.session_manager = session_manager
		self.settings = settings or OrchestratorSettings()
		if self.settings.checkpoint_interval < 1:
			raise ConfigError("checkpoint_interval must be at least 1")
		if self.settings.max_consecutive_recoveries < 1:
			raise ConfigError("max_consecutive_recoveries must be at least 1")
		self.logger = logger or logging.getLogger(__name__)
		self.tracker = tracker or ProgressTracker(self.logger)
		self.reporter = reporter or OrchestrationReporter()

		self.session: Optional[SessionState] = None
		self.agent_token_usage = TokenUsage()
		self._stop_requested = False
		self._recovery_streak = 0

	def stop(self) -> None:
		"""Ask the loop to stop at the next iteration boundary."""
		self.logger.info("Stop requested; finishing current iteration")
		self._stop_requested = True

	def _require_session(self) -> SessionState:
		if self.session is None:
			raise NoActiveSessionError("No active session")
		return self.session

	async def orchestrate(self) -> OrchestrationResult:
		"""
		Run the mission until done, out of budget, stopped or failed.

		Returns:
			OrchestrationResult with success = the completion policy's verdict

		Raises:
			EnvironmentValidationError: If the coding agent cannot run
			Exception: Any unrecovered error, after it has been recorded on
				the session and a best-effort checkpoint written
		"""
		started = time.monotonic()
		self._stop_requested = False
		self._recovery_streak = 0

		try:
			resumed = await self._resolve_session()
			session = self._require_session()
			self.reporter.on_session_start(self.mission, session, resumed)

			if not await self.agent.validate_environment():
				raise EnvironmentValidationError("Coding agent environment validation failed")

			await self.agent.start_session(session.session_id)
			if self.mission.started_at is None:
				self.mission.started_at = utcnow()

			try:
				while self._should_continue():
					before = self.session.iterations
					await self.execute_iteration()
					iterations = self.session.iterations
					if iterations != before and iterations % self.settings.checkpoint_interval == 0:
						await self.session_manager.checkpoint(session.session_id)

				if self.tracker.check_completion(self.mission):
					self.mission.completed_at = utcnow()
					await self._transition(SessionPhase.COMPLETION)

				await self.session_manager.checkpoint(session.session_id)
			finally:
				await self.agent.end_session()

		except Exception as error:
			await self._record_fatal(error)
			raise

		result = self._build_result(time.monotonic() - started)
		self.logger.info(
			f"Orchestration finished: success={result.success}, reason={result.stopped_reason}, "
			f"iterations={result.metrics.iterations}"
		)
		self.logger.debug(self.tracker.generate_progress_report(self.mission, result.final_state))
		self.reporter.on_finish(result)
		return result

	def _should_continue(self) -> bool:
		session = self._require_session()
		if self._stop_requested:
			return False
		if self.tracker.check_completion(self.mission):
			return False
		if session.iterations >= self.settings.max_iterations:
			self.logger.warning(f"Iteration budget of {self.settings.max_iterations} exhausted")
			return False
		return session.current_phase != SessionPhase.COMPLETION

	async def _resolve_session(self) -> bool:
		"""Resume the mission's active session or create one. Returns True if resumed."""
		existing = await self.session_manager.find_active_session(self.mission.id)
		if existing is not None:
			self.session = existing
			self._apply_recorded_progress()
			self.logger.info(
				f"Resuming session {existing.session_id} at iteration {existing.iterations} "
				f"(phase {existing.current_phase.value})"
			)
			if existing.current_phase == SessionPhase.ERROR_RECOVERY:
				self.logger.info("Session was recovered from a checkpoint; continuing with planning")
			return True

		session = await self.session_manager.create_session(self.mission.id, self.mission.repository)
		session.pending_tasks = [c.id for c in self.tracker.get_pending_criteria(self.mission)]
		await self.session_manager.save_session(session)
		self.session = session
		return False

	def _apply_recorded_progress(self) -> None:
		"""Mark criteria the resumed session already completed."""
		session = self._require_session()
		recorded = session.metadata.get("criteria", {})

		for criterion_id in session.completed_tasks:
			criterion = self.mission.get_criterion(criterion_id)
			if criterion is None or criterion.completed:
				continue
			entry = recorded.get(criterion_id, {})
			self.mission = self.tracker.mark_criterion_complete(self.mission, criterion_id, entry.get("evidence"))
			if entry.get("completed_at"):
				self.mission.get_criterion(criterion_id).completed_at = datetime.fromisoformat(entry["completed_at"])

	async def _transition(self, phase: SessionPhase) -> None:
		session = self._require_session()
		self.session = await self.session_manager.update_phase(session.session_id, phase)
		self.reporter.on_phase_change(self.session, phase)

	async def execute_iteration(self) -> None:
		"""
		Run one plan/execute/validate pass.

		Step failures go to handle_iteration_error(); fatal errors and
		unrecoverable failures propagate.
		"""
		self._require_session()

		try:
			advanced = await self._run_iteration()
		except FATAL_ERRORS:
			raise
		except Exception as error:
			await self.handle_iteration_error(error)
			return

		if not advanced:
			return

		self._recovery_streak = 0
		session = self._require_session()
		session.iterations += 1
		await self.session_manager.save_session(session)

		progress = self.tracker.calculate_progress(self.mission)
		progress.estimated_time_remaining = self.tracker.estimate_time_remaining(
			self.mission, session, self.settings.avg_time_per_criterion
		)
		self.logger.info(
			f"Iteration {session.iterations} complete: {progress.completion_percentage}% ({progress.current_phase})"
		)
		self.reporter.on_iteration_complete(self.mission, session, progress)

	async def _run_iteration(self) -> bool:
		"""Steps of one iteration. Returns False if nothing was left to do."""
		await self._transition(SessionPhase.PLANNING)
		progress = self.tracker.calculate_progress(self.mission)
		analysis = await self.oracle.analyze_current_state(self.mission, self.session, progress)

		criterion = self.tracker.get_next_priority_criterion(self.mission)
		if criterion is None:
			self.logger.info("No pending criteria left")
			await self._transition(SessionPhase.COMPLETION)
			return False

		recovery_actions = self._take_recovery_actions()
		plan = await self.oracle.plan_next_action(
			analysis,
			criterion,
			self.session,
			recovery_actions=recovery_actions,
			mission=self.mission,
		)

		await self._transition(SessionPhase.EXECUTION)
		result = await self.agent.execute(plan, self._execution_context())
		self.agent_token_usage = self.agent_token_usage + result.token_usage
		if not result.success:
			self.logger.warning(f"Agent reported failure: {result.error}")
		if result.session_ended:
			self.logger.info("Agent signalled the end of its session")

		for agent_artifact in result.artifacts:
			await self._record_artifact(agent_artifact)

		await self._transition(SessionPhase.VALIDATION)
		verdict = await self.oracle.validate_criterion_completion(criterion, result, self.session)
		if verdict.completed:
			self._complete_criterion(criterion.id, verdict.evidence)
		else:
			self.logger.info(f"Criterion {criterion.id} not yet met: {verdict.reason}")

		return True

	def _take_recovery_actions(self) -> list[str]:
		"""Pop injected recovery actions off the front of the pending queue."""
		session = self._require_session()
		criterion_ids = {c.id for c in self.mission.definition_of_done}
		actions = []
		while session.pending_tasks and session.pending_tasks[0] not in criterion_ids:
			actions.append(session.pending_tasks.pop(0))
		if actions:
			self.logger.info(f"Planning with {len(actions)} recovery action(s)")
		return actions

	def _execution_context(self) -> ExecutionContext:
		session = self._require_session()
		limit = self.settings.artifact_preview_chars

		# Latest version of each path, in first-seen order
		latest: dict[str, Artifact] = {}
		for artifact in session.artifacts:
			latest[artifact.path] = artifact

		return ExecutionContext(
			working_directory=self.mission.repository,
			environment=dict(self.settings.environment),
			previous_artifacts=[ArtifactPreview(path=a.path, content=a.content[:limit]) for a in latest.values()],
		)

	async def _record_artifact(self, produced: AgentArtifact) -> None:
		session = self._require_session()
		now = utcnow()
		artifact = Artifact(
			type=ArtifactType(produced.type),
			path=produced.path,
			content=produced.content,
			version=session.next_artifact_version(produced.path),
			created_at=now,
			updated_at=now,
			checksum=Artifact.compute_checksum(produced.content),
		)
		self.session = await self.session_manager.add_artifact(session.session_id, artifact)

	def _complete_criterion(self, criterion_id: str, evidence: Optional[str]) -> None:
		session = self._require_session()
		self.mission = self.tracker.mark_criterion_complete(self.mission, criterion_id, evidence)
		criterion = self.mission.get_criterion(criterion_id)

		if criterion_id not in session.completed_tasks:
			session.completed_tasks.append(criterion_id)
		session.pending_tasks = [t for t in session.pending_tasks if t != criterion_id]
		session.metadata.setdefault("criteria", {})[criterion_id] = {
			"evidence": criterion.evidence,
			"completed_at": criterion.completed_at.isoformat(),
		}

		self.reporter.on_criterion_complete(criterion)

	async def handle_iteration_error(self, error: Exception) -> None:
		"""
		Ask the oracle how to recover from a failed step.

		Recoverable: the recovery action goes to the front of pending_tasks
		and the failure is recorded. A recovered attempt does not count as an
		iteration; instead, more than max_consecutive_recoveries failures in a
		row without a completed iteration re-raise the error, as does an
		unrecoverable verdict.
		"""
		session = self._require_session()
		failed_phase = session.current_phase
		self.logger.error(f"Iteration failed during {failed_phase.value}: {type(error).__name__}: {error}")

		if self._recovery_streak >= self.settings.max_consecutive_recoveries:
			self.logger.error(f"Giving up after {self._recovery_streak} consecutive recovered failures")
			raise error

		await self._transition(SessionPhase.ERROR_RECOVERY)

		try:
			verdict = await self.oracle.generate_error_recovery(error, self.session)
		except FATAL_ERRORS:
			raise
		except Exception as oracle_error:
			self.logger.error(f"Recovery oracle failed: {oracle_error}")
			raise error

		if not verdict.can_recover:
			self.logger.error(f"Cannot recover: {verdict.reason}")
			raise error

		session = self._require_session()
		action = verdict.recovery_action or verdict.strategy or f"Retry after {type(error).__name__}: {error}"
		session.pending_tasks.insert(0, action)
		session.errors.append(SessionError(
			type=type(error).__name__,
			message=str(error),
			stack=_format_stack(error),
			context={
				"phase": failed_phase.value,
				"iteration": session.iterations,
				"strategy": verdict.strategy,
				"recovery_action": action,
			},
		))
		session.metadata["recoveries"] = session.metadata.get("recoveries", 0) + 1
		self._recovery_streak += 1
		await self.session_manager.save_session(session)

		self.logger.info(f"Recovering with strategy '{verdict.strategy}'")
		self.reporter.on_recovery(error, verdict)

	async def _record_fatal(self, error: Exception) -> None:
		"""Record an unrecovered error and checkpoint, without masking the error."""
		if self.session is None:
			self.logger.error(f"Orchestration failed before a session existed: {error}")
			return

		session_id = self.session.session_id
		try:
			self.session = await self.session_manager.add_error(session_id, SessionError(
				type="OrchestrationError",
				message=str(error),
				stack=_format_stack(error),
				context={
					"error_type": type(error).__name__,
					"phase": self.session.current_phase.value,
					"iteration": self.session.iterations,
				},
			))
			await self.session_manager.checkpoint(session_id)
		except Exception as record_error:
			self.logger.error(f"Could not record failure on session {session_id}: {record_error}")

	def _build_result(self, duration: float) -> OrchestrationResult:
		session = self._require_session()
		progress = self.tracker.calculate_progress(self.mission)
		success = self.tracker.check_completion(self.mission)

		if success:
			reason = "completed"
		elif self._stop_requested:
			reason = "stopped"
		elif session.current_phase == SessionPhase.COMPLETION:
			reason = "no_pending_criteria"
		else:
			reason = "max_iterations"

		by_type: dict[str, int] = {}
		for artifact in session.artifacts:
			by_type[artifact.type.value] = by_type.get(artifact.type.value, 0) + 1

		metrics = OrchestrationMetrics(
			iterations=session.iterations,
			completed_criteria=progress.completed_criteria,
			total_criteria=progress.total_criteria,
			completion_percentage=progress.completion_percentage,
			artifacts_by_type=by_type,
			errors=len(session.errors),
			unresolved_errors=len(session.unresolved_errors()),
			recoveries=session.metadata.get("recoveries", 0),
			token_usage=self.oracle.token_usage + self.agent_token_usage,
			duration_seconds=duration,
		)

		return OrchestrationResult(
			success=success,
			mission=self.mission,
			final_state=session,
			metrics=metrics,
			artifacts=list(session.artifacts),
			stopped_reason=reason,
		)


def _format_stack(error: BaseException) -> str:
	return "".join(traceback.format_exception(type(error), error, error.__traceback__))
