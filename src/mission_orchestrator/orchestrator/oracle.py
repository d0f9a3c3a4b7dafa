"""
Decision Oracle - LLM-backed planning, validation and recovery judgments.

The oracle's replies are free text expected to contain JSON. Each reply is
parsed into a tagged result: Parsed(value) when the JSON validates, else
Fallback(raw, reason). A Fallback is then turned into a usable verdict by
one of the fallback_* functions below, which define what the orchestrator
does when the model does not answer in the requested shape.
"""

import json
import logging
import traceback
from dataclasses import dataclass
from typing import Generic, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..json_utils import extract_json_from_text
from ..llm import LLMClient, TokenUsage
from ..missions.models import DoDCriterion, Mission, MissionProgress
from ..sessions.models import SessionState
from .agent import AgentResult

T = TypeVar("T", bound=BaseModel)


class _OracleModel(BaseModel):
	"""Accepts snake_case or camelCase keys."""
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalysisResult(_OracleModel):
	current_status: str = Field(default="")
	blockers: list[str] = Field(default_factory=list)
	recommendations: list[str] = Field(default_factory=list)
	next_steps: list[str] = Field(default_factory=list)
	confidence: float = Field(default=0.0)


class ValidationVerdict(_OracleModel):
	completed: bool = Field(default=False)
	evidence: Optional[str] = Field(default=None)
	reason: Optional[str] = Field(default=None)
	confidence: float = Field(default=0.0)


class RecoveryVerdict(_OracleModel):
	can_recover: bool = Field(default=False)
	strategy: Optional[str] = Field(default=None)
	recovery_action: Optional[str] = Field(default=None)
	reason: Optional[str] = Field(default=None)


@dataclass(frozen=True)
class Parsed(Generic[T]):
	value: T


@dataclass(frozen=True)
class Fallback:
	raw: str
	reason: str


ParseResult = Union[Parsed[T], Fallback]


def parse_oracle_json(raw: str, model: type[T]) -> ParseResult:
	"""Parse an oracle reply into `model`, or say why it could not be."""
	data = extract_json_from_text(raw)
	if data is None:
		return Fallback(raw=raw, reason="no JSON object found")
	if not isinstance(data, dict):
		return Fallback(raw=raw, reason=f"expected a JSON object, got {type(data).__name__}")
	try:
		return Parsed(model.model_validate(data))
	except ValidationError as e:
		return Fallback(raw=raw, reason=f"JSON did not match {model.__name__}: {e.error_count()} errors")


def fallback_analysis(raw: str) -> AnalysisResult:
	"""Unparseable analysis: keep going, carrying the raw text as a recommendation."""
	return AnalysisResult(
		current_status="Analysis in progress",
		blockers=[],
		recommendations=[raw],
		next_steps=["Continue with implementation"],
		confidence=0.7,
	)


def fallback_validation(raw: str) -> ValidationVerdict:
	"""Unparseable validation: a keyword match on "complete"/"success" decides."""
	lowered = raw.lower()
	completed = "complete" in lowered or "success" in lowered
	return ValidationVerdict(
		completed=completed,
		evidence=raw if completed else None,
		reason=None if completed else raw,
		confidence=0.5,
	)


def fallback_recovery(raw: str) -> RecoveryVerdict:
	"""Unparseable recovery advice: assume recoverable and use the text as the action."""
	return RecoveryVerdict(
		can_recover=True,
		strategy="Retry with modifications",
		recovery_action=raw,
		reason="Attempting automatic recovery",
	)


ANALYSIS_SYSTEM_PROMPT = """You are an expert project manager analyzing the current state of a software development mission.

Your role is to:
1. Assess the current progress and identify any blockers
2. Provide actionable recommendations
3. Determine the best next steps
4. Evaluate confidence in successful completion

Respond in JSON format with the following structure:
{
  "currentStatus": "Brief status summary",
  "blockers": ["List of current blockers"],
  "recommendations": ["List of recommendations"],
  "nextSteps": ["Ordered list of next actions"],
  "confidence": 0.0-1.0
}"""

PLANNING_SYSTEM_PROMPT = """You are an expert software architect planning the implementation of a specific criterion.

Create a clear, actionable plan for a coding agent to execute. Break complex
work into steps, consider dependencies, and stay focused on the criterion.

Be specific about:
- Files to create or modify
- Code to write
- Tests to implement
- Validation steps"""

VALIDATION_SYSTEM_PROMPT = """You are a quality assurance expert validating whether a criterion has been successfully completed.

Evaluate the execution results against the criterion requirements.
Be strict but fair in your assessment.

Respond in JSON format:
{
  "completed": true/false,
  "evidence": "Evidence of completion" (if completed),
  "reason": "Why not complete" (if not completed),
  "confidence": 0.0-1.0
}"""

RECOVERY_SYSTEM_PROMPT = """You are an expert troubleshooter helping recover from errors during mission execution.

Analyze the error and determine:
1. Whether recovery is possible
2. The best recovery strategy
3. Specific recovery actions

Respond in JSON format:
{
  "canRecover": true/false,
  "strategy": "Recovery strategy name" (if recoverable),
  "recoveryAction": "Specific action to take" (if recoverable),
  "reason": "Why recovery is/isn't possible"
}"""


class DecisionOracle:
	"""
	Asks an LLM for analysis, plans, validation verdicts and recovery advice.

	Token usage across all calls is accumulated in `token_usage`.
	"""

	def __init__(self, client: LLMClient, logger: Optional[logging.Logger] = None):
		self.client = client
		self.logger = logger or logging.getLogger(__name__)
		self.token_usage = TokenUsage()

	async def _ask(self, system_prompt: str, user_message: str) -> str:
		response = await self.client.send_message(system_prompt, user_message)
		self.token_usage = self.token_usage + response.token_usage
		return response.content

	def _resolve(self, result: ParseResult, fallback, kind: str):
		if isinstance(result, Parsed):
			return result.value
		self.logger.warning(f"Oracle {kind} reply was not valid JSON ({result.reason}); using fallback")
		return fallback(result.raw)

	async def analyze_current_state(
		self,
		mission: Mission,
		session: SessionState,
		progress: MissionProgress,
	) -> AnalysisResult:
		"""Assess where the mission stands."""
		recent = "\n".join(f"- {a.type.value}: {a.path}" for a in session.artifacts[-5:]) or "- None"
		user_message = f"""
Mission: {mission.title}
Description: {mission.description}
Repository: {mission.repository}

Progress: {progress.completion_percentage}% complete
Completed criteria: {progress.completed_criteria}/{progress.total_criteria}
Critical criteria: {progress.critical_completed}/{progress.critical_criteria}
Current phase: {progress.current_phase}

Session details:
- Iterations: {session.iterations}
- Current phase: {session.current_phase.value}
- Completed tasks: {len(session.completed_tasks)}
- Pending tasks: {len(session.pending_tasks)}
- Errors: {len(session.unresolved_errors())} unresolved

Recent artifacts:
{recent}

Analyze the current state and provide recommendations."""

		raw = await self._ask(ANALYSIS_SYSTEM_PROMPT, user_message)
		return self._resolve(parse_oracle_json(raw, AnalysisResult), fallback_analysis, "analysis")

	async def plan_next_action(
		self,
		analysis: AnalysisResult,
		criterion: DoDCriterion,
		session: SessionState,
		recovery_actions: Sequence[str] = (),
		mission: Optional[Mission] = None,
	) -> str:
		"""
		Turn the analysis into a concrete action plan for one criterion.

		Args:
			analysis: Result of analyze_current_state()
			criterion: Criterion to work on
			session: Current session
			recovery_actions: Recovery steps that must be handled first
			mission: Mission, for its constraints and context

		Returns:
			Plan text handed verbatim to the coding agent
		"""
		sections = [
			"Current Analysis:",
			json.dumps(analysis.model_dump(by_alias=True), indent=2),
			"",
			"Criterion to achieve:",
			f"- ID: {criterion.id}",
			f"- Description: {criterion.description}",
			f"- Priority: {criterion.priority.value}",
			f"- Measurable: {criterion.measurable}",
			"",
			"Session context:",
			f"- Repository: {session.repository}",
			f"- Completed tasks: {', '.join(session.completed_tasks) or 'None'}",
			f"- Existing artifacts: {len(session.artifacts)}",
		]

		if mission is not None:
			if mission.context:
				sections.extend(["", "Mission context:", mission.context])
			if mission.constraints:
				sections.extend(["", "Constraints:"] + [f"- {c}" for c in mission.constraints])

		if recovery_actions:
			sections.extend(["", "Recovery actions to address first (a previous step failed):"])
			sections.extend(f"- {action}" for action in recovery_actions)

		sections.extend(["", "Create a detailed action plan for the coding agent to implement this criterion."])

		plan = await self._ask(PLANNING_SYSTEM_PROMPT, "\n".join(sections))
		self.logger.info(f"Generated action plan for {criterion.id} ({len(plan)} chars)")
		return plan

	async def validate_criterion_completion(
		self,
		criterion: DoDCriterion,
		result: AgentResult,
		session: SessionState,
	) -> ValidationVerdict:
		"""Judge whether the agent's work satisfies the criterion."""
		artifacts = "\n".join(f"- {a.type.value}: {a.path}" for a in result.artifacts) or "- None"
		user_message = f"""
Criterion to validate:
- Description: {criterion.description}
- Priority: {criterion.priority.value}
- Measurable: {criterion.measurable}

Execution result:
- Success: {result.success}
- Session ended: {result.session_ended}
- Artifacts created: {len(result.artifacts)}
- Error: {result.error or 'None'}

Output preview:
{result.output[:1000]}

Artifacts:
{artifacts}

Determine if this criterion has been successfully completed."""

		raw = await self._ask(VALIDATION_SYSTEM_PROMPT, user_message)
		verdict = self._resolve(parse_oracle_json(raw, ValidationVerdict), fallback_validation, "validation")
		self.logger.info(f"Validation of {criterion.id}: completed={verdict.completed} (confidence {verdict.confidence})")
		return verdict

	async def generate_error_recovery(self, error: BaseException, session: SessionState) -> RecoveryVerdict:
		"""Ask whether and how to recover from a failed iteration step."""
		stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
		recent = ", ".join(e.message for e in session.errors[-3:]) or "None"
		user_message = f"""
Error encountered:
- Type: {type(error).__name__}
- Message: {error}
- Stack: {stack[:500]}

Session state:
- Current phase: {session.current_phase.value}
- Iterations: {session.iterations}
- Recent errors: {recent}

Analyze this error and provide a recovery strategy."""

		raw = await self._ask(RECOVERY_SYSTEM_PROMPT, user_message)
		return self._resolve(parse_oracle_json(raw, RecoveryVerdict), fallback_recovery, "recovery")
