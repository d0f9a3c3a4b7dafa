"""
Sessions module - Durable, checkpointed session state.

Provides:
- SessionState, Artifact and SessionError models
- SessionStore, SQLite storage with append-only checkpoint history
- SessionManager, write-through cache with checkpoint and recovery
"""

from .manager import SessionManager
from .models import Artifact, ArtifactType, SessionError, SessionPhase, SessionState
from .store import CheckpointRecord, SessionStore

__all__ = [
	"Artifact",
	"ArtifactType",
	"CheckpointRecord",
	"SessionError",
	"SessionManager",
	"SessionPhase",
	"SessionState",
	"SessionStore",
]
