"""Rich views for missions, sessions and orchestration results."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .missions.models import DoDCriterion, DoDPriority, Mission, MissionProgress
from .orchestrator.engine import OrchestrationReporter, OrchestrationResult
from .orchestrator.oracle import RecoveryVerdict
from .sessions.models import SessionPhase, SessionState
from .sessions.store import CheckpointRecord

PRIORITY_STYLES = {
	DoDPriority.CRITICAL: "bold red",
	DoDPriority.HIGH: "yellow",
	DoDPriority.MEDIUM: "cyan",
	DoDPriority.LOW: "dim",
}

PHASE_STYLES = {
	SessionPhase.INITIALIZATION: "dim",
	SessionPhase.PLANNING: "cyan",
	SessionPhase.EXECUTION: "yellow",
	SessionPhase.VALIDATION: "magenta",
	SessionPhase.COMPLETION: "green",
	SessionPhase.ERROR_RECOVERY: "red",
}


def format_duration(seconds: float) -> str:
	"""Format a duration for display. e.g. '45ms', '1.2s', '2m 3s', '1h 5m'."""
	if seconds < 1.0:
		return f"{seconds * 1000:.0f}ms"
	if seconds < 60.0:
		return f"{seconds:.1f}s"
	if seconds < 3600.0:
		minutes = int(seconds // 60)
		return f"{minutes}m {seconds % 60:.0f}s"
	hours = int(seconds // 3600)
	return f"{hours}h {int(seconds % 3600 // 60)}m"


def _criterion_line(criterion: DoDCriterion) -> str:
	icon = "[green][x][/green]" if criterion.completed else "[dim][ ][/dim]"
	style = PRIORITY_STYLES[criterion.priority]
	return f"{icon} [{style}]{criterion.priority.value}[/{style}] {criterion.description}"


def _phase_text(phase: SessionPhase) -> str:
	style = PHASE_STYLES.get(phase, "white")
	return f"[{style}]{phase.value}[/{style}]"


def render_mission(mission: Mission, console: Optional[Console] = None) -> None:
	"""Render a mission's criteria as a tree."""
	console = console or Console()

	tree = Tree(f"[bold]{mission.title}[/bold]  [dim]{mission.repository}[/dim]")
	for criterion in mission.definition_of_done:
		tree.add(_criterion_line(criterion))
	console.print(tree)


def render_progress(
	mission: Mission,
	session: SessionState,
	progress: MissionProgress,
	console: Optional[Console] = None,
) -> None:
	"""Render a progress panel for a running mission."""
	console = console or Console()

	lines = [
		f"[bold]Mission:[/bold] {mission.title}",
		f"[bold]Session:[/bold] {session.session_id}",
		f"[bold]Iteration:[/bold] {session.iterations}",
		f"[bold]Progress:[/bold] {progress.completed_criteria}/{progress.total_criteria} criteria "
		f"({progress.completion_percentage}%, {progress.current_phase})",
		f"[bold]Critical:[/bold] {progress.critical_completed}/{progress.critical_criteria}",
	]
	if progress.estimated_time_remaining is not None:
		lines.append(f"[bold]Estimated remaining:[/bold] {format_duration(progress.estimated_time_remaining)}")

	unresolved = session.unresolved_errors()
	if unresolved:
		lines.append(f"[bold]Unresolved errors:[/bold] [red]{len(unresolved)}[/red]")

	console.print(Panel("\n".join(lines), title="Progress", border_style="cyan"))


def render_session_list(sessions: list[SessionState], console: Optional[Console] = None) -> None:
	"""Render a table of stored sessions."""
	console = console or Console()

	if not sessions:
		console.print("[dim]No sessions recorded yet.[/dim]")
		return

	table = Table(title="Sessions")
	table.add_column("Session ID", style="cyan")
	table.add_column("Mission")
	table.add_column("Phase")
	table.add_column("Iterations", justify="right")
	table.add_column("Done", justify="right")
	table.add_column("Errors", justify="right")
	table.add_column("Created")

	for session in sessions:
		errors = len(session.unresolved_errors())
		table.add_row(
			session.session_id,
			session.mission_id[:8],
			_phase_text(session.current_phase),
			str(session.iterations),
			str(len(session.completed_tasks)),
			f"[red]{errors}[/red]" if errors else "0",
			session.timestamp.strftime("%Y-%m-%d %H:%M"),
		)

	console.print(table)


def render_session_detail(session: SessionState, console: Optional[Console] = None) -> None:
	"""Render one session: summary, artifacts and errors."""
	console = console or Console()

	lines = [
		f"[bold]Mission:[/bold] {session.mission_id}",
		f"[bold]Repository:[/bold] {session.repository}",
		f"[bold]Instance:[/bold] {session.instance_id}",
		f"[bold]Phase:[/bold] {_phase_text(session.current_phase)}",
		f"[bold]Iterations:[/bold] {session.iterations}",
		f"[bold]Completed tasks:[/bold] {len(session.completed_tasks)}",
		f"[bold]Pending tasks:[/bold] {len(session.pending_tasks)}",
		f"[bold]Last checkpoint:[/bold] "
		f"{session.last_checkpoint.isoformat() if session.last_checkpoint else 'never'}",
	]
	console.print(Panel("\n".join(lines), title=f"Session: {session.session_id}", border_style="cyan"))

	if session.artifacts:
		table = Table(title="Artifacts")
		table.add_column("Path", style="cyan")
		table.add_column("Type")
		table.add_column("Version", justify="right")
		table.add_column("Checksum", style="dim")
		for artifact in session.artifacts:
			table.add_row(artifact.path, artifact.type.value, str(artifact.version), (artifact.checksum or "")[:12])
		console.print(table)

	if session.errors:
		table = Table(title="Errors")
		table.add_column("Time")
		table.add_column("Type", style="red")
		table.add_column("Message")
		table.add_column("Resolved", justify="center")
		for error in session.errors:
			table.add_row(
				error.timestamp.strftime("%H:%M:%S"),
				error.type,
				error.message[:80],
				"yes" if error.resolved else "no",
			)
		console.print(table)


def render_checkpoints(checkpoints: list[CheckpointRecord], console: Optional[Console] = None) -> None:
	"""Render a session's checkpoint history, newest first."""
	console = console or Console()

	if not checkpoints:
		console.print("[dim]No checkpoints for this session.[/dim]")
		return

	table = Table(title="Checkpoints")
	table.add_column("Key", style="cyan")
	table.add_column("Created")
	table.add_column("Phase")
	table.add_column("Iterations", justify="right")
	for record in checkpoints:
		table.add_row(record.key, record.created_at[:19], record.phase, str(record.iterations))
	console.print(table)


def render_result(result: OrchestrationResult, console: Optional[Console] = None) -> None:
	"""Render the final summary of an orchestrate() run."""
	console = console or Console()
	metrics = result.metrics

	status = "[green]SUCCESS[/green]" if result.success else "[yellow]INCOMPLETE[/yellow]"
	lines = [
		f"[bold]Status:[/bold] {status} ({result.stopped_reason})",
		f"[bold]Criteria:[/bold] {metrics.completed_criteria}/{metrics.total_criteria} "
		f"({metrics.completion_percentage}%)",
		f"[bold]Iterations:[/bold] {metrics.iterations}",
		f"[bold]Duration:[/bold] {format_duration(metrics.duration_seconds)}",
		f"[bold]Errors:[/bold] {metrics.errors} ({metrics.unresolved_errors} unresolved, {metrics.recoveries} recoveries)",
		f"[bold]Tokens:[/bold] {metrics.token_usage.total_tokens} (~${metrics.token_usage.estimated_cost:.4f})",
	]
	if metrics.artifacts_by_type:
		counts = ", ".join(f"{kind}: {count}" for kind, count in sorted(metrics.artifacts_by_type.items()))
		lines.append(f"[bold]Artifacts:[/bold] {counts}")

	border = "green" if result.success else "yellow"
	console.print(Panel("\n".join(lines), title=result.mission.title, border_style=border))
	render_mission(result.mission, console)


class ConsoleReporter(OrchestrationReporter):
	"""Prints orchestration progress to a Rich console."""

	def __init__(self, console: Optional[Console] = None, verbose: bool = False):
		self.console = console or Console()
		self.verbose = verbose

	def on_session_start(self, mission: Mission, session: SessionState, resumed: bool) -> None:
		verb = "Resuming" if resumed else "Starting"
		self.console.print(
			f"[bold]{verb}[/bold] session [cyan]{session.session_id}[/cyan] for '{mission.title}'"
		)

	def on_phase_change(self, session: SessionState, phase: SessionPhase) -> None:
		if self.verbose:
			self.console.print(f"  [dim]phase ->[/dim] {_phase_text(phase)}")

	def on_iteration_complete(self, mission: Mission, session: SessionState, progress: MissionProgress) -> None:
		render_progress(mission, session, progress, self.console)

	def on_criterion_complete(self, criterion: DoDCriterion) -> None:
		self.console.print(f"[green]Criterion met:[/green] {criterion.description}")

	def on_recovery(self, error: BaseException, verdict: RecoveryVerdict) -> None:
		self.console.print(
			f"[red]Step failed:[/red] {error}  [yellow]recovering:[/yellow] {verdict.strategy or 'retry'}"
		)

	def on_finish(self, result: OrchestrationResult) -> None:
		render_result(result, self.console)
