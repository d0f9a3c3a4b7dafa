"""Tests for building missions from GitHub issues."""

from datetime import datetime, timezone

import pytest

from mission_orchestrator.errors import MissionParseError
from mission_orchestrator.github_client import IssueData
from mission_orchestrator.missions.github import (
	default_criteria,
	extract_checkboxes,
	extract_description,
	extract_yaml_config,
	format_progress_comment,
	issue_mission_id,
	issue_to_mission,
	progress_bar,
)
from mission_orchestrator.missions.models import DoDPriority
from mission_orchestrator.orchestrator.progress import ProgressTracker

ISSUE_BODY = """\
## Objective
Add a health endpoint so the load balancer can check the service.

## Definition of Done
- [ ] GET /health returns 200
- [x] Health handler is registered
* [ ] Tests cover /health

## Priority
- [x] High
- [ ] Low

```yaml
mission:
  context: Flask app in src/app.py
  constraints:
    - No new dependencies
  definition_of_done:
    - criteria: README documents /health
      priority: low
```
"""


def make_issue(body=ISSUE_BODY, labels=None, title="[CCO] Add a health endpoint", number=7):
	return IssueData(
		number=number,
		title=title,
		body=body,
		labels=labels or [],
		url=f"https://github.com/acme/widgets/issues/{number}",
		created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
	)


class TestExtraction:
	"""Tests for the pieces pulled out of an issue body."""

	def test_checkboxes_skip_template_options(self):
		assert extract_checkboxes(ISSUE_BODY) == [
			("GET /health returns 200", False),
			("Health handler is registered", True),
			("Tests cover /health", False),
		]

	def test_yaml_block_unwraps_mission_key(self):
		config = extract_yaml_config(ISSUE_BODY)

		assert config["context"] == "Flask app in src/app.py"
		assert config["constraints"] == ["No new dependencies"]

	def test_invalid_yaml_is_ignored(self):
		assert extract_yaml_config("```yaml\nkey: [unclosed\n```") == {}

	def test_non_mapping_yaml_is_ignored(self):
		assert extract_yaml_config("```yml\n- a\n- b\n```") == {}

	def test_description_prefers_objective_section(self):
		assert extract_description(ISSUE_BODY) == "Add a health endpoint so the load balancer can check the service."

	def test_description_without_objective(self):
		body = "# Problem\nThe service has no health check.\n\n- [ ] Add one\n"

		assert extract_description(body) == "The service has no health check."

	def test_empty_body_gets_generic_description(self):
		assert extract_description("") == "Complete the tasks defined in this issue"

	def test_label_defaults_merge_without_duplicates(self):
		keys = [key for key, _, _ in default_criteria(["Bug", "enhancement"])]

		assert keys == ["fix-bug", "add-tests", "implement-feature", "update-docs"]

	def test_unlabelled_issue_gets_generic_criterion(self):
		assert default_criteria([]) == [
			("complete-task", "Complete the task described in the issue", DoDPriority.HIGH)
		]


class TestIssueToMission:
	"""Tests for issue_to_mission."""

	def test_builds_mission(self):
		mission = issue_to_mission(make_issue(), "acme/widgets", "/work/widgets")

		assert mission.id == issue_mission_id("acme/widgets", 7)
		assert mission.id.startswith("gh-issue-7-")
		assert mission.title == "Add a health endpoint"
		assert mission.repository == "/work/widgets"
		assert mission.context == "Flask app in src/app.py"
		assert mission.constraints == ["No new dependencies"]
		assert mission.created_at == datetime(2024, 5, 1, tzinfo=timezone.utc)

		descriptions = [c.description for c in mission.definition_of_done]
		assert descriptions == [
			"GET /health returns 200",
			"Health handler is registered",
			"Tests cover /health",
			"README documents /health",
		]
		assert [c.completed for c in mission.definition_of_done] == [False, True, False, False]
		assert mission.definition_of_done[3].priority == DoDPriority.LOW
		assert mission.definition_of_done[3].id == f"{mission.id}-dod-3"

	def test_same_issue_same_id(self):
		first = issue_to_mission(make_issue(), "acme/widgets", "/a")
		second = issue_to_mission(make_issue(), "ACME/Widgets", "/b")
		other_repo = issue_to_mission(make_issue(), "acme/gadgets", "/a")

		assert first.id == second.id
		assert first.id != other_repo.id

	def test_labels_fill_in_missing_criteria(self):
		mission = issue_to_mission(make_issue(body="Crashes on start.", labels=["bug"]), "acme/widgets", "/a")

		assert [c.description for c in mission.definition_of_done] == [
			"Fix the reported bug",
			"Add tests to prevent regression",
		]
		assert mission.description == "Crashes on start."
		assert mission.context == "GitHub issue acme/widgets#7: https://github.com/acme/widgets/issues/7"

	def test_yaml_string_criteria(self):
		body = "```yaml\ndefinition_of_done:\n  - Lint passes\n```\n"

		mission = issue_to_mission(make_issue(body=body), "acme/widgets", "/a")

		assert [c.description for c in mission.definition_of_done] == ["Lint passes"]
		assert mission.definition_of_done[0].priority == DoDPriority.MEDIUM

	def test_unknown_yaml_priority_defaults_to_medium(self):
		body = "```yaml\ndefinition_of_done:\n  - criteria: Lint passes\n    priority: urgent\n```\n"

		mission = issue_to_mission(make_issue(body=body), "acme/widgets", "/a")

		assert mission.definition_of_done[0].priority == DoDPriority.MEDIUM

	@pytest.mark.parametrize("block", [
		"definition_of_done: Lint passes",
		"definition_of_done:\n  - priority: high",
	])
	def test_malformed_yaml_criteria(self, block):
		with pytest.raises(MissionParseError):
			issue_to_mission(make_issue(body=f"```yaml\n{block}\n```\n"), "acme/widgets", "/a")


class TestProgressComment:
	"""Tests for the issue status comment."""

	def test_progress_bar(self):
		assert progress_bar(0) == "[" + "░" * 20 + "]"
		assert progress_bar(50, width=10) == "[█████░░░░░]"
		assert progress_bar(100, width=4) == "[████]"

	def test_comment_lists_criteria(self):
		mission = issue_to_mission(make_issue(), "acme/widgets", "/a")
		progress = ProgressTracker().calculate_progress(mission)

		comment = format_progress_comment(mission, progress, stopped_reason="Iteration budget exhausted")

		assert comment.startswith("## Mission progress")
		assert "25%" in comment
		assert "### Definition of Done (1/4)" in comment
		assert "- [x] Health handler is registered" in comment
		assert "- [ ] GET /health returns 200" in comment
		assert f"`{mission.id}`" in comment
		assert "- **Stopped**: Iteration budget exhausted" in comment
