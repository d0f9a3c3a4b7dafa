"""
Mission Parser - Load missions from YAML or JSON mission files.

File shape:

	mission:
	  title: Build a REST API
	  repository: ./my-project
	  description: ...
	  definition_of_done:
	    - criteria: All endpoints return JSON
	      priority: critical
	      measurable: true
	  constraints: [...]
	  context: ...

The mission id is the file's `id` if given, else derived from repository
and title, so parsing the same file twice yields the same id and a rerun
resumes the mission's session.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from ..errors import MissionParseError
from .models import DoDCriterion, DoDPriority, Mission

MISSION_NAMESPACE = uuid.UUID("7f1c4f0e-3b8a-5d2e-9c61-4a0b8e2d5f13")

SUPPORTED_FORMATS = ("yaml", "json")


def mission_id_for(repository: str, title: str) -> str:
	return str(uuid.uuid5(MISSION_NAMESPACE, f"{repository}\n{title}"))


class MissionParser:
	"""Builds Mission objects from mission files and strings."""

	def __init__(self, logger: Optional[logging.Logger] = None):
		self.logger = logger or logging.getLogger(__name__)

	def parse_file(self, path: str | Path) -> Mission:
		"""
		Parse a .yaml/.yml/.json mission file.

		Relative repository paths resolve against the file's directory.

		Raises:
			MissionParseError: If the file is missing, unreadable or invalid
		"""
		path = Path(path)
		suffix = path.suffix.lower()
		if suffix in (".yaml", ".yml"):
			fmt = "yaml"
		elif suffix == ".json":
			fmt = "json"
		else:
			raise MissionParseError(f"Unsupported mission file extension: {suffix or '(none)'}")

		try:
			content = path.read_text(encoding="utf-8")
		except OSError as e:
			raise MissionParseError(f"Cannot read mission file {path}: {e}") from e

		self.logger.info(f"Parsing mission file {path}")
		return self.parse_string(content, fmt, base_dir=path.resolve().parent)

	def parse_string(self, content: str, fmt: str = "yaml", base_dir: Optional[Path] = None) -> Mission:
		"""
		Parse mission text.

		Args:
			content: YAML or JSON text
			fmt: "yaml" or "json"
			base_dir: Directory relative repository paths resolve against (cwd if None)

		Raises:
			MissionParseError: If the text cannot be parsed into a valid mission
		"""
		if fmt not in SUPPORTED_FORMATS:
			raise MissionParseError(f"Unsupported mission format: {fmt}")

		try:
			if fmt == "yaml":
				data = yaml.safe_load(content)
			else:
				data = json.loads(content)
		except (yaml.YAMLError, ValueError) as e:
			raise MissionParseError(f"Invalid {fmt.upper()} in mission: {e}") from e

		return self._build_mission(data, base_dir or Path.cwd())

	def _build_mission(self, data: Any, base_dir: Path) -> Mission:
		if not isinstance(data, dict) or not isinstance(data.get("mission"), dict):
			raise MissionParseError("Mission file must have a top-level 'mission' mapping")
		section = data["mission"]

		for key in ("title", "repository"):
			if not section.get(key):
				raise MissionParseError(f"Mission is missing required field '{key}'")

		items = section.get("definition_of_done") or []
		if not isinstance(items, list):
			raise MissionParseError("'definition_of_done' must be a list")

		repository = self._resolve_repository(str(section["repository"]), base_dir)
		mission_id = str(section.get("id") or mission_id_for(repository, str(section["title"])))

		criteria = []
		for index, item in enumerate(items):
			if isinstance(item, str):
				item = {"criteria": item}
			if not isinstance(item, dict) or not item.get("criteria"):
				raise MissionParseError(f"definition_of_done[{index}] needs a 'criteria' description")
			criteria.append(DoDCriterion(
				id=f"{mission_id}-dod-{index}",
				description=str(item["criteria"]),
				measurable=item.get("measurable", True) is not False,
				priority=self._parse_priority(item.get("priority")),
			))

		constraints = section.get("constraints")
		try:
			mission = Mission(
				id=mission_id,
				repository=repository,
				title=str(section["title"]),
				description=str(section.get("description") or ""),
				definition_of_done=criteria,
				context=section.get("context"),
				constraints=[str(c) for c in constraints] if constraints else None,
			)
		except ValidationError as e:
			raise MissionParseError(f"Invalid mission data: {e}") from e

		self.logger.info(f"Loaded mission {mission.id} '{mission.title}' with {len(criteria)} criteria")
		return mission

	def _parse_priority(self, value: Any) -> DoDPriority:
		if value is None:
			return DoDPriority.MEDIUM
		try:
			return DoDPriority(str(value).lower())
		except ValueError:
			self.logger.warning(f"Unknown priority '{value}', defaulting to medium")
			return DoDPriority.MEDIUM

	@staticmethod
	def _resolve_repository(repository: str, base_dir: Path) -> str:
		repo_path = Path(repository).expanduser()
		if not repo_path.is_absolute():
			repo_path = (base_dir / repo_path).resolve()
		return str(repo_path)

	def validate_mission(self, mission: Mission) -> list[str]:
		"""
		Check a mission is runnable.

		Returns:
			Problems found; empty if the mission is valid. Missing critical
			criteria and non-measurable criteria are only logged.
		"""
		errors = []

		if not mission.title.strip():
			errors.append("Mission title is required")
		if not mission.repository.strip():
			errors.append("Repository path is required")
		if not mission.definition_of_done:
			errors.append("At least one Definition of Done criterion is required")

		if not any(c.priority == DoDPriority.CRITICAL for c in mission.definition_of_done):
			self.logger.warning(f"Mission {mission.id} has no critical criteria")

		for criterion in mission.definition_of_done:
			if not criterion.description.strip():
				errors.append(f"Criterion {criterion.id} has no description")
			if not criterion.measurable:
				self.logger.warning(f"Criterion {criterion.id} is not measurable: {criterion.description}")

		return errors

	def export_mission(self, mission: Mission, fmt: str = "yaml") -> str:
		"""Serialize a mission back to mission-file form."""
		if fmt not in SUPPORTED_FORMATS:
			raise MissionParseError(f"Unsupported mission format: {fmt}")

		section: dict[str, Any] = {
			"id": mission.id,
			"title": mission.title,
			"repository": mission.repository,
			"description": mission.description,
			"definition_of_done": [
				{
					"criteria": c.description,
					"measurable": c.measurable,
					"priority": c.priority.value,
				}
				for c in mission.definition_of_done
			],
		}
		if mission.constraints:
			section["constraints"] = list(mission.constraints)
		if mission.context:
			section["context"] = mission.context

		data = {"mission": section}
		if fmt == "yaml":
			return yaml.safe_dump(data, sort_keys=False, indent=2)
		return json.dumps(data, indent=2)
