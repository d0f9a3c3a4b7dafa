"""Mission Orchestrator - Drive a coding agent to a prioritized Definition of Done."""

__version__ = "0.1.0"
