"""CLI for mission-orchestrator: run, init, validate, sessions, recover, and doctor commands."""

import argparse
import asyncio
import platform
import signal
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console

from .config import Config, load_config, validate_config
from .errors import GitHubError, OrchestratorError
from .github_client import GitHubClient, IssueData, detect_repo_slug
from .llm import LLMClient, create_llm_client
from .logging_config import setup_logging
from .missions.github import format_progress_comment, issue_to_mission
from .missions.models import Mission
from .missions.parser import MissionParser
from .orchestrator.agent import ClaudeCodeAgent, CodingAgent
from .orchestrator.engine import Orchestrator
from .orchestrator.oracle import DecisionOracle
from .orchestrator.progress import ProgressTracker
from .orchestrator.publish import GitWorkspace, PullRequestPublisher
from .reporting import (
	ConsoleReporter,
	render_checkpoints,
	render_mission,
	render_session_detail,
	render_session_list,
)
from .sessions.manager import SessionManager
from .sessions.store import SessionStore

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_ERROR = 2

CORE_DEPS = ["aiohttp", "aiosqlite", "platformdirs", "pydantic", "PyGithub", "python-dotenv", "PyYAML", "rich"]

MISSION_TEMPLATE = """\
mission:
  title: Describe the mission in a few words
  repository: .
  description: |
    What should exist when this mission is done, and why.
  definition_of_done:
    - criteria: The main feature works end to end
      priority: critical
    - criteria: Tests cover the new behavior
      priority: high
    - criteria: README documents how to use it
      priority: medium
  context: |
    Anything the coding agent should know about the codebase.
  constraints:
    - Keep the existing public API unchanged
"""

CONFIG_TEMPLATE = """\
log_level = "INFO"

[orchestrator]
max_iterations = 50
checkpoint_interval = 5

[oracle]
# openrouter, ollama, vllm or llamacpp
provider = "openrouter"
model = "anthropic/claude-opus-4-1"

[agent]
command = "claude"

[github]
base_branch = "main"
branch_prefix = "feature"
comment_progress = true
"""


def build_llm_client(config: Config) -> LLMClient:
	"""Oracle backend used by `run`."""
	return create_llm_client(config.oracle)


def build_agent(mission: Mission, config: Config) -> CodingAgent:
	"""Coding agent used by `run`."""
	return ClaudeCodeAgent(mission.repository, config.agent)


def build_github_client(repo_name: str, config: Config) -> GitHubClient:
	"""GitHub client used by `run --issue`."""
	return GitHubClient(repo_name, config.github.token)


def build_workspace(repository: str) -> GitWorkspace:
	"""Git checkout that `run --create-pr` commits in."""
	return GitWorkspace(repository)


def _load(args: argparse.Namespace) -> Config:
	config_path = getattr(args, "config", None)
	return load_config(Path(config_path) if config_path else None)


def _session_manager(config: Config) -> SessionManager:
	return SessionManager(SessionStore(config.sessions_db_path))


def cmd_run(args: argparse.Namespace, console: Console) -> int:
	"""Run a mission file or GitHub issue until done, out of budget or interrupted."""
	if bool(args.mission) == (args.issue is not None):
		console.print("[red]Give either a mission file or --issue N.[/red]")
		return EXIT_ERROR
	if args.create_pr and args.issue is None:
		console.print("[red]--create-pr needs --issue.[/red]")
		return EXIT_ERROR
	if args.semantic_commits and not args.create_pr:
		console.print("[red]--semantic-commits only applies with --create-pr.[/red]")
		return EXIT_ERROR

	config = _load(args)
	if args.max_iterations is not None:
		config.orchestrator.max_iterations = args.max_iterations
	if args.checkpoint_interval is not None:
		config.orchestrator.checkpoint_interval = args.checkpoint_interval
	if args.base_branch:
		config.github.base_branch = args.base_branch
	validate_config(config)

	setup_logging(
		level="DEBUG" if args.verbose else config.log_level,
		log_dir=config.log_dir,
		secrets=[config.oracle.api_key, config.github.token],
	)

	parser = MissionParser()
	github: Optional[GitHubClient] = None
	issue: Optional[IssueData] = None
	if args.issue is not None:
		repository = str(Path(args.repository or ".").resolve())
		repo_name = args.repo or detect_repo_slug(repository)
		if not repo_name:
			raise GitHubError(
				f"Cannot tell which GitHub repository {repository} belongs to",
				suggestion="Pass --repo owner/name or add a GitHub 'origin' remote.",
			)
		github = build_github_client(repo_name, config)
		issue = github.get_issue(args.issue)
		mission = issue_to_mission(issue, repo_name, repository)
	else:
		mission = parser.parse_file(args.mission)

	problems = parser.validate_mission(mission)
	if problems:
		for problem in problems:
			console.print(f"[red]Invalid mission:[/red] {problem}")
		return EXIT_ERROR

	publisher: Optional[PullRequestPublisher] = None
	branch = ""
	if args.create_pr:
		publisher = PullRequestPublisher(
			github,
			build_workspace(mission.repository),
			config.github,
			semantic_commits=args.semantic_commits,
		)
		branch = publisher.prepare_branch(mission, issue.number)

	result = asyncio.run(_run_mission(mission, config, console, verbose=args.verbose))

	if issue is not None and config.github.comment_progress:
		progress = ProgressTracker().calculate_progress(result.mission)
		github.add_comment(issue.number, format_progress_comment(result.mission, progress, result.stopped_reason))

	if publisher is not None:
		if result.artifacts or result.success:
			pr = publisher.publish(result, branch, issue.number, issue.labels)
			console.print(f"[green]Pull request #{pr.number}:[/green] {pr.url}")
		else:
			console.print("[yellow]No work to publish; pull request not opened.[/yellow]")

	return EXIT_OK if result.success else EXIT_INCOMPLETE


def cmd_init(args: argparse.Namespace, console: Console) -> int:
	"""Write a starter mission file (and config.toml if there is none)."""
	mission_path = Path(args.path)
	if mission_path.exists() and not args.force:
		console.print(f"[red]{mission_path} already exists.[/red] Use --force to overwrite it.")
		return EXIT_ERROR
	mission_path.parent.mkdir(parents=True, exist_ok=True)
	mission_path.write_text(MISSION_TEMPLATE)
	console.print(f"Wrote {mission_path}")

	config = _load(args)
	if not config.config_file.exists():
		config.config_dir.mkdir(parents=True, exist_ok=True)
		config.config_file.write_text(CONFIG_TEMPLATE)
		console.print(f"Wrote {config.config_file}")

	console.print(f"Edit the mission, then run: mission-orchestrator validate {mission_path}")
	return EXIT_OK


async def _run_mission(mission: Mission, config: Config, console: Console, verbose: bool = False):
	manager = _session_manager(config)
	client = build_llm_client(config)
	try:
		orchestrator = Orchestrator(
			mission,
			DecisionOracle(client),
			build_agent(mission, config),
			manager,
			settings=config.orchestrator,
			reporter=ConsoleReporter(console, verbose=verbose),
		)

		loop = asyncio.get_running_loop()
		try:
			loop.add_signal_handler(signal.SIGINT, orchestrator.stop)
		except (NotImplementedError, RuntimeError):
			# Not supported on this platform/loop; Ctrl-C falls back to KeyboardInterrupt
			pass

		try:
			return await orchestrator.orchestrate()
		finally:
			try:
				loop.remove_signal_handler(signal.SIGINT)
			except (NotImplementedError, RuntimeError):
				pass
	finally:
		await client.close()
		await manager.close()


def cmd_validate(args: argparse.Namespace, console: Console) -> int:
	"""Parse and check a mission file without running it."""
	parser = MissionParser()
	mission = parser.parse_file(args.mission)
	problems = parser.validate_mission(mission)

	render_mission(mission, console)
	console.print(f"[dim]Mission id: {mission.id}[/dim]")
	if problems:
		for problem in problems:
			console.print(f"[red]- {problem}[/red]")
		return EXIT_ERROR

	console.print("[green]Mission is valid.[/green]")
	return EXIT_OK


def cmd_sessions(args: argparse.Namespace, console: Console) -> int:
	"""Inspect stored sessions."""
	config = _load(args)
	return asyncio.run(_sessions(args, config, console))


async def _sessions(args: argparse.Namespace, config: Config, console: Console) -> int:
	manager = _session_manager(config)
	try:
		target = getattr(args, "sessions_target", None) or "list"

		if target == "list":
			render_session_list(await manager.list_sessions(), console)
			return EXIT_OK

		session = await manager.load_session(args.session_id)
		if session is None:
			console.print(f"[red]Session {args.session_id} not found.[/red]")
			return EXIT_ERROR

		if target == "show":
			render_session_detail(session, console)
		else:
			render_checkpoints(await manager.list_checkpoints(args.session_id), console)
		return EXIT_OK
	finally:
		await manager.close()


def cmd_recover(args: argparse.Namespace, console: Console) -> int:
	"""Restore a session from its newest checkpoint."""
	config = _load(args)
	return asyncio.run(_recover(args.session_id, config, console))


async def _recover(session_id: str, config: Config, console: Console) -> int:
	manager = _session_manager(config)
	try:
		session = await manager.recover(session_id)
	finally:
		await manager.close()

	render_session_detail(session, console)
	console.print("Run the mission file again to resume this session.")
	return EXIT_OK


def cmd_doctor(args: argparse.Namespace, console: Console) -> int:
	"""Health check - verify installation and configuration."""
	console.print("mission-orchestrator doctor")
	console.print("=" * 40)

	config = _load(args)
	issues: list[str] = []

	py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
	console.print(f"  Python:       {py_ver}")
	console.print(f"  Platform:     {platform.system()} {platform.machine()}")
	console.print()

	console.print("  Core deps:")
	for dep in CORE_DEPS:
		try:
			console.print(f"    {dep:22s} {pkg_version(dep)}")
		except PackageNotFoundError:
			console.print(f"    {dep:22s} NOT INSTALLED")
			issues.append(f"{dep} package not installed")
	console.print()

	console.print("  Config:")
	console.print(f"    config dir:          {config.config_dir}")
	console.print(f"    data dir:            {config.data_dir}")
	# load_config() has already rejected an invalid file
	if config.config_file.exists():
		console.print("    config.toml:         valid")
	else:
		console.print("    config.toml:         not found (optional)")

	console.print(f"    oracle provider:     {config.oracle.provider}")
	if config.oracle.provider != "openrouter":
		console.print("    OpenRouter key:      not needed")
	elif config.oracle.api_key:
		console.print("    OpenRouter key:      set")
	else:
		console.print("    OpenRouter key:      MISSING")
		issues.append("OPENROUTER_API_KEY is not set")
	console.print(f"    GitHub token:        {'set' if config.github.token else 'not set (needed for --issue)'}")
	console.print()

	agent = ClaudeCodeAgent(Path.cwd(), config.agent)
	agent_ok = asyncio.run(agent.validate_environment())
	console.print(f"  Claude CLI:   {'OK' if agent_ok else 'NOT AVAILABLE'}")
	if not agent_ok:
		issues.append(f"'{config.agent.command}' CLI not available")

	console.print()
	if issues:
		console.print(f"  {len(issues)} issue(s) found:")
		for issue in issues:
			console.print(f"    - {issue}")
		return EXIT_INCOMPLETE

	console.print("  All checks passed.")
	return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="mission-orchestrator",
		description="Drive a coding agent through a mission's Definition of Done",
	)
	parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
	subparsers = parser.add_subparsers(dest="command")

	# run
	run_parser = subparsers.add_parser("run", help="Run a mission file or GitHub issue")
	run_parser.add_argument("mission", nargs="?", help="Mission file (.yaml, .yml or .json)")
	run_parser.add_argument("--issue", type=int, default=None, help="Build the mission from this GitHub issue")
	run_parser.add_argument("--repo", type=str, default=None, help="GitHub repository owner/name (default: origin remote)")
	run_parser.add_argument("--repository", type=str, default=None, help="Local checkout for --issue (default: .)")
	run_parser.add_argument("--create-pr", action="store_true", help="Commit, push and open a pull request")
	run_parser.add_argument("--semantic-commits", action="store_true", help="One conventional commit per artifact type")
	run_parser.add_argument("--base-branch", type=str, default=None, help="Pull request target branch")
	run_parser.add_argument("--config", type=str, default=argparse.SUPPRESS, help="Path to config.toml")
	run_parser.add_argument("--max-iterations", type=int, default=None, help="Iteration budget")
	run_parser.add_argument("--checkpoint-interval", type=int, default=None, help="Checkpoint every N iterations")
	run_parser.add_argument("-v", "--verbose", action="store_true", help="Show phase changes and debug logs")
	run_parser.set_defaults(func=cmd_run)

	# init
	init_parser = subparsers.add_parser("init", help="Write a starter mission file")
	init_parser.add_argument("path", nargs="?", default="mission.yaml", help="Where to write it (default: mission.yaml)")
	init_parser.add_argument("--force", action="store_true", help="Overwrite an existing file")
	init_parser.set_defaults(func=cmd_init)

	# validate
	validate_parser = subparsers.add_parser("validate", help="Check a mission file")
	validate_parser.add_argument("mission", help="Mission file (.yaml, .yml or .json)")
	validate_parser.set_defaults(func=cmd_validate)

	# sessions
	sessions_parser = subparsers.add_parser("sessions", help="Inspect stored sessions")
	sessions_subparsers = sessions_parser.add_subparsers(dest="sessions_target")

	sessions_list = sessions_subparsers.add_parser("list", help="List sessions")
	sessions_list.set_defaults(func=cmd_sessions)

	sessions_show = sessions_subparsers.add_parser("show", help="Show one session")
	sessions_show.add_argument("session_id", help="Session ID")
	sessions_show.set_defaults(func=cmd_sessions)

	sessions_checkpoints = sessions_subparsers.add_parser("checkpoints", help="List a session's checkpoints")
	sessions_checkpoints.add_argument("session_id", help="Session ID")
	sessions_checkpoints.set_defaults(func=cmd_sessions)

	sessions_parser.set_defaults(func=cmd_sessions)

	# recover
	recover_parser = subparsers.add_parser("recover", help="Restore a session from its newest checkpoint")
	recover_parser.add_argument("session_id", help="Session ID")
	recover_parser.set_defaults(func=cmd_recover)

	# doctor
	doctor_parser = subparsers.add_parser("doctor", help="Health check")
	doctor_parser.set_defaults(func=cmd_doctor)

	return parser


def main(argv: Optional[list[str]] = None, console: Optional[Console] = None) -> int:
	"""CLI entry point."""
	load_dotenv()
	console = console or Console()

	parser = build_parser()
	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		return EXIT_ERROR

	try:
		return args.func(args, console)
	except OrchestratorError as e:
		console.print(f"[red]Error ({e.code.value}):[/red] {e.message}")
		if e.suggestion:
			console.print(f"[dim]{e.suggestion}[/dim]")
		return EXIT_ERROR
	except KeyboardInterrupt:
		console.print("[yellow]Interrupted.[/yellow]")
		return EXIT_ERROR


if __name__ == "__main__":
	sys.exit(main())
