"""
Issue Missions - Build a Mission from a GitHub issue.

Checkbox items in the issue body become Definition-of-Done criteria
(already-ticked boxes start out complete). A ```yaml block may add
description, context, constraints or extra prioritized criteria. An issue
with no usable checkboxes gets a default Definition of Done chosen from its
labels.
"""

import logging
import re
import uuid
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from ..errors import MissionParseError
from ..github_client import IssueData
from .models import DoDCriterion, DoDPriority, Mission, MissionProgress
from .parser import MISSION_NAMESPACE

logger = logging.getLogger(__name__)

_CHECKBOX = re.compile(r"^[ \t]*[-*][ \t]*\[([ xX])\][ \t]*(\S.*?)[ \t]*$", re.MULTILINE)
_YAML_BLOCK = re.compile(r"```ya?ml[ \t]*\n(.*?)\n?```", re.DOTALL)
_HEADING = re.compile(r"^#+\s.*$", re.MULTILINE)
_OBJECTIVE = re.compile(r"^#+\s*(?:Mission\s+)?Objective\s*\n(.*?)(?=^#+\s|\Z)", re.IGNORECASE | re.MULTILINE | re.DOTALL)

# Checkboxes that configure the issue template rather than describe work
_META_CHECKBOXES = (
	re.compile(r"^(critical|high|medium|low)$", re.IGNORECASE),
	re.compile(r"^(manual|on pr|on schedule|on .*label)$", re.IGNORECASE),
)

_LABEL_DEFAULTS: dict[str, list[tuple[str, str, DoDPriority]]] = {
	"bug": [
		("fix-bug", "Fix the reported bug", DoDPriority.HIGH),
		("add-tests", "Add tests to prevent regression", DoDPriority.MEDIUM),
	],
	"enhancement": [
		("implement-feature", "Implement the requested feature", DoDPriority.HIGH),
		("add-tests", "Add comprehensive tests", DoDPriority.MEDIUM),
		("update-docs", "Update documentation", DoDPriority.LOW),
	],
	"documentation": [
		("update-docs", "Update or create documentation", DoDPriority.HIGH),
	],
}
_LABEL_DEFAULTS["feature"] = _LABEL_DEFAULTS["enhancement"]


def issue_mission_id(repo_name: str, number: int) -> str:
	"""Stable per issue, so running the same issue again resumes its session."""
	digest = uuid.uuid5(MISSION_NAMESPACE, f"github:{repo_name.lower()}#{number}")
	return f"gh-issue-{number}-{str(digest)[:8]}"


def extract_checkboxes(body: str) -> list[tuple[str, bool]]:
	"""(description, ticked) for every work checkbox in the body."""
	items = []
	for match in _CHECKBOX.finditer(body):
		text = match.group(2)
		if any(pattern.match(text) for pattern in _META_CHECKBOXES):
			continue
		items.append((text, match.group(1).lower() == "x"))
	return items


def extract_yaml_config(body: str) -> dict[str, Any]:
	"""First ```yaml block as a mapping; anything unparseable is ignored with a warning."""
	match = _YAML_BLOCK.search(body)
	if not match:
		return {}
	try:
		data = yaml.safe_load(match.group(1))
	except yaml.YAMLError as e:
		logger.warning(f"Ignoring invalid YAML block in issue: {e}")
		return {}
	if not isinstance(data, dict):
		logger.warning("Ignoring YAML block in issue: not a mapping")
		return {}
	if isinstance(data.get("mission"), dict):
		return data["mission"]
	return data


def extract_description(body: str) -> str:
	"""The Objective section if there is one, else the body minus checkboxes, YAML and headings."""
	without_yaml = _YAML_BLOCK.sub("", body)
	objective = _OBJECTIVE.search(without_yaml)
	if objective:
		text = _CHECKBOX.sub("", objective.group(1)).strip()
		if text:
			return text

	text = _HEADING.sub("", _CHECKBOX.sub("", without_yaml))
	text = re.sub(r"\n{3,}", "\n\n", text).strip()
	return text or "Complete the tasks defined in this issue"


def default_criteria(labels: list[str]) -> list[tuple[str, str, DoDPriority]]:
	"""Criteria implied by the issue's labels; a generic one if none match."""
	chosen: list[tuple[str, str, DoDPriority]] = []
	seen: set[str] = set()
	for label in (label.lower() for label in labels):
		for key, description, priority in _LABEL_DEFAULTS.get(label, []):
			if key not in seen:
				seen.add(key)
				chosen.append((key, description, priority))
	return chosen or [("complete-task", "Complete the task described in the issue", DoDPriority.HIGH)]


def _priority(value: Any) -> DoDPriority:
	try:
		return DoDPriority(str(value).lower())
	except ValueError:
		logger.warning(f"Unknown priority '{value}' in issue YAML, defaulting to medium")
		return DoDPriority.MEDIUM


def issue_to_mission(issue: IssueData, repo_name: str, repository: str) -> Mission:
	"""
	Build a Mission for an issue.

	Args:
		issue: Issue fetched from GitHub
		repo_name: `owner/repo` the issue belongs to
		repository: Local checkout the coding agent works in

	Raises:
		MissionParseError: If the YAML block makes the mission invalid
	"""
	mission_id = issue_mission_id(repo_name, issue.number)
	config = extract_yaml_config(issue.body)

	criteria = []
	for index, (description, ticked) in enumerate(extract_checkboxes(issue.body)):
		criteria.append(DoDCriterion(
			id=f"{mission_id}-dod-{index}",
			description=description,
			completed=ticked,
		))

	extra = config.get("definition_of_done") or []
	if not isinstance(extra, list):
		raise MissionParseError("'definition_of_done' in the issue YAML block must be a list")
	for item in extra:
		if isinstance(item, str):
			item = {"criteria": item}
		if not isinstance(item, dict) or not item.get("criteria"):
			raise MissionParseError("Each YAML definition_of_done entry needs a 'criteria' description")
		criteria.append(DoDCriterion(
			id=f"{mission_id}-dod-{len(criteria)}",
			description=str(item["criteria"]),
			measurable=item.get("measurable", True) is not False,
			priority=_priority(item.get("priority", "medium")),
		))

	if not criteria:
		criteria = [
			DoDCriterion(id=f"{mission_id}-{key}", description=description, priority=priority)
			for key, description, priority in default_criteria(issue.labels)
		]

	constraints = config.get("constraints")
	title = re.sub(r"^\[CCO\]\s*", "", issue.title, flags=re.IGNORECASE)
	try:
		mission = Mission(
			id=mission_id,
			repository=repository,
			title=str(config.get("title") or title),
			description=str(config.get("description") or extract_description(issue.body)),
			definition_of_done=criteria,
			context=config.get("context") or f"GitHub issue {repo_name}#{issue.number}: {issue.url}",
			constraints=[str(c) for c in constraints] if constraints else None,
		)
	except ValidationError as e:
		raise MissionParseError(f"Issue #{issue.number} does not make a valid mission: {e}") from e

	if issue.created_at is not None:
		mission.created_at = issue.created_at

	logger.info(f"Built mission {mission.id} from issue #{issue.number} with {len(criteria)} criteria")
	return mission


def progress_bar(percentage: int, width: int = 20) -> str:
	filled = max(0, min(width, percentage * width // 100))
	return "[" + "█" * filled + "░" * (width - filled) + "]"


def format_progress_comment(mission: Mission, progress: MissionProgress, stopped_reason: Optional[str] = None) -> str:
	"""Markdown status comment for the issue a mission came from."""
	lines = [
		"## Mission progress",
		"",
		f"{progress_bar(progress.completion_percentage)} {progress.completion_percentage}%",
		"",
		f"### Definition of Done ({progress.completed_criteria}/{progress.total_criteria})",
	]
	for criterion in mission.definition_of_done:
		mark = "x" if criterion.completed else " "
		lines.append(f"- [{mark}] {criterion.description}")

	lines += [
		"",
		f"- **Mission ID**: `{mission.id}`",
		f"- **Phase**: {progress.current_phase}",
	]
	if stopped_reason:
		lines.append(f"- **Stopped**: {stopped_reason}")
	return "\n".join(lines) + "\n"
