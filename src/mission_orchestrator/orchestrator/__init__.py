"""
Orchestrator module - The control loop and its collaborators.

Components:
- ProgressTracker: Completion policy and progress math
- DecisionOracle: LLM-backed analysis, planning, validation and recovery
- CodingAgent / ClaudeCodeAgent: Executes action plans in the repository
- Orchestrator: Plan/execute/validate loop with checkpointing and recovery
- PullRequestPublisher: Commits a finished run and opens its pull request
"""

from .agent import AgentArtifact, AgentResult, ClaudeCodeAgent, CodingAgent, ExecutionContext
from .engine import OrchestrationMetrics, OrchestrationReporter, OrchestrationResult, Orchestrator
from .oracle import AnalysisResult, DecisionOracle, RecoveryVerdict, ValidationVerdict
from .progress import ProgressTracker
from .publish import GitWorkspace, PullRequestPublisher

__all__ = [
	"AgentArtifact",
	"AgentResult",
	"AnalysisResult",
	"ClaudeCodeAgent",
	"CodingAgent",
	"DecisionOracle",
	"ExecutionContext",
	"GitWorkspace",
	"OrchestrationMetrics",
	"OrchestrationReporter",
	"OrchestrationResult",
	"Orchestrator",
	"ProgressTracker",
	"PullRequestPublisher",
	"RecoveryVerdict",
	"ValidationVerdict",
]
