"""
Session Manager - Persistence, checkpointing and recovery of SessionState.

Provides:
- Write-through in-memory cache over the durable SessionStore
- Append-only checkpoint history
- Recovery from the newest checkpoint
- Per-session locking so writes to one session never interleave
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from ..errors import SessionNotFoundError
from .models import Artifact, SessionError, SessionPhase, SessionState, new_id
from .store import CheckpointRecord, SessionStore


class SessionManager:
	"""
	Manages durable session state for the orchestrator.

	The cache and the store always agree after a write returns: every
	mutation goes through _write(), which persists before updating the cache.
	The cache returns the same SessionState instance on repeated loads.
	"""

	def __init__(self, store: SessionStore, logger: Optional[logging.Logger] = None):
		"""
		Initialize the session manager.

		Args:
			store: Durable store backing the cache
			logger: Logger to use (defaults to the module logger)
		"""
		self.store = store
		self.logger = logger or logging.getLogger(__name__)
		self._sessions: dict[str, SessionState] = {}
		self._session_locks: dict[str, asyncio.Lock] = {}

	def _lock(self, session_id: str) -> asyncio.Lock:
		lock = self._session_locks.get(session_id)
		if lock is None:
			lock = asyncio.Lock()
			self._session_locks[session_id] = lock
		return lock

	async def _write(self, state: SessionState) -> None:
		await self.store.put_session(state)
		self._sessions[state.session_id] = state

	async def close(self) -> None:
		"""Close the underlying store."""
		await self.store.close()

	def clear_cache(self) -> None:
		"""Forget every cached session; the next load reads the store."""
		self._sessions.clear()

	async def create_session(self, mission_id: str, repository: str) -> SessionState:
		"""
		Create and persist a new session.

		Args:
			mission_id: Mission this session works on
			repository: Repository path the mission targets

		Returns:
			The new SessionState in phase INITIALIZATION
		"""
		session_id = new_id()
		session = SessionState(
			session_id=session_id,
			mission_id=mission_id,
			repository=repository,
			instance_id=f"cc-{session_id[:8]}",
		)

		async with self._lock(session_id):
			await self._write(session)

		self.logger.info(f"Created session {session_id} for mission {mission_id}")
		return session

	async def load_session(self, session_id: str) -> Optional[SessionState]:
		"""Get a session from the cache, else the store. None if unknown."""
		cached = self._sessions.get(session_id)
		if cached is not None:
			return cached

		session = await self.store.get_session(session_id)
		if session is None:
			self.logger.debug(f"Session {session_id} not found")
			return None

		self._sessions[session_id] = session
		return session

	async def _require(self, session_id: str) -> SessionState:
		session = await self.load_session(session_id)
		if session is None:
			raise SessionNotFoundError(f"Session {session_id} not found")
		return session

	async def save_session(self, state: SessionState) -> None:
		"""Overwrite the durable record and the cache."""
		async with self._lock(state.session_id):
			await self._write(state)
		self.logger.debug(f"Saved session {state.session_id}")

	async def update_phase(self, session_id: str, phase: SessionPhase) -> SessionState:
		"""Set the session's current phase and persist it."""
		async with self._lock(session_id):
			session = await self._require(session_id)
			session.current_phase = phase
			await self._write(session)

		self.logger.debug(f"Session {session_id} entered phase {phase.value}")
		return session

	async def add_artifact(self, session_id: str, artifact: Artifact) -> SessionState:
		"""Append an artifact to the session and persist it."""
		async with self._lock(session_id):
			session = await self._require(session_id)
			session.artifacts.append(artifact)
			await self._write(session)

		self.logger.debug(
			f"Added {artifact.type.value} artifact {artifact.path} v{artifact.version} to session {session_id}"
		)
		return session

	async def add_error(self, session_id: str, error: SessionError) -> SessionState:
		"""Append an error record to the session and persist it."""
		async with self._lock(session_id):
			session = await self._require(session_id)
			session.errors.append(error)
			await self._write(session)

		self.logger.warning(f"Recorded {error.type} on session {session_id}: {error.message}")
		return session

	async def checkpoint(self, session_id: str) -> str:
		"""
		Snapshot the session into the checkpoint history.

		Sets last_checkpoint, appends an immutable snapshot, then saves
		the primary record.

		Returns:
			The checkpoint key
		"""
		async with self._lock(session_id):
			session = await self._require(session_id)
			now = datetime.now(timezone.utc)
			session.last_checkpoint = now
			key = await self.store.append_checkpoint(session, now)
			await self._write(session)

		self.logger.info(f"Checkpoint {key} written for session {session_id}")
		return key

	async def recover(self, session_id: str) -> SessionState:
		"""
		Recover a session, preferring its newest checkpoint.

		A session restored from a checkpoint is put in ERROR_RECOVERY to
		signal that it resumed from a snapshot. Without checkpoints the
		plain saved record is returned unchanged.

		Raises:
			SessionNotFoundError: If neither a checkpoint nor a record exists
		"""
		async with self._lock(session_id):
			snapshot = await self.store.get_latest_checkpoint(session_id)
			if snapshot is not None:
				snapshot.current_phase = SessionPhase.ERROR_RECOVERY
				await self._write(snapshot)
				self.logger.info(f"Recovered session {session_id} from checkpoint")
				return snapshot

		session = await self.load_session(session_id)
		if session is None:
			raise SessionNotFoundError(f"Cannot recover session {session_id}: no checkpoint or saved record")

		self.logger.info(f"Recovered session {session_id} from saved record (no checkpoints)")
		return session

	async def find_active_session(self, mission_id: str) -> Optional[SessionState]:
		"""
		Find the first session for a mission that has not completed.

		Looks in the cache first, then the store in creation order. At most
		one active session per mission is assumed; this is not enforced.
		"""
		for session in self._sessions.values():
			if session.mission_id == mission_id and session.current_phase != SessionPhase.COMPLETION:
				return session

		for session in await self.store.list_sessions():
			if session.session_id in self._sessions:
				continue
			if session.mission_id == mission_id and session.current_phase != SessionPhase.COMPLETION:
				self._sessions[session.session_id] = session
				return session

		return None

	async def list_sessions(self) -> list[SessionState]:
		"""All durably stored sessions, unfiltered."""
		return await self.store.list_sessions()

	async def list_checkpoints(self, session_id: str) -> list[CheckpointRecord]:
		"""Checkpoint history of a session, newest first."""
		return await self.store.list_checkpoints(session_id)
