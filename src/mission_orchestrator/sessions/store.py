"""
Session Store - SQLite-backed durable storage for session state.

Layout:
- sessions: one row per session_id holding the latest SessionState
  (logical key sessions/{session_id})
- checkpoints: append-only history of snapshots keyed by
  {session_id}-{timestamp}; rows are never updated or deleted

Storage failures are raised as PersistenceError with the underlying
sqlite/OS error chained. Nothing here retries.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite
from pydantic import ValidationError

from ..errors import PersistenceError, SessionCorruptedError
from .models import SessionState

logger = logging.getLogger(__name__)


@dataclass
class CheckpointRecord:
	"""Metadata of one stored checkpoint."""
	key: str
	session_id: str
	created_at: str
	phase: str
	iterations: int


def checkpoint_key(session_id: str, created_at: datetime) -> str:
	return f"{session_id}-{int(created_at.timestamp() * 1_000_000)}"


class SessionStore:
	"""
	SQLite-backed session storage with checkpoint history.

	Usage:
		store = SessionStore("data/sessions.db")
		await store.init()

		await store.put_session(state)
		state = await store.get_session(session_id)

		key = await store.append_checkpoint(state, datetime.now(timezone.utc))
		snapshot = await store.get_latest_checkpoint(session_id)
	"""

	def __init__(self, db_path: str | Path):
		"""Initialize the session store."""
		self.db_path = Path(db_path)
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self) -> None:
		"""Open the database and create the schema."""
		if self._db is not None:
			return
		try:
			self.db_path.parent.mkdir(parents=True, exist_ok=True)
			self._db = await aiosqlite.connect(str(self.db_path))
			self._db.row_factory = aiosqlite.Row

			await self._db.execute("""
				CREATE TABLE IF NOT EXISTS sessions (
					session_id TEXT PRIMARY KEY,
					mission_id TEXT NOT NULL,
					phase TEXT NOT NULL,
					data TEXT NOT NULL,
					created_at TEXT NOT NULL,
					updated_at TEXT NOT NULL
				)
			""")

			await self._db.execute("""
				CREATE TABLE IF NOT EXISTS checkpoints (
					id INTEGER PRIMARY KEY AUTOINCREMENT,
					checkpoint_key TEXT NOT NULL,
					session_id TEXT NOT NULL,
					phase TEXT NOT NULL,
					iterations INTEGER NOT NULL,
					data TEXT NOT NULL,
					created_at TEXT NOT NULL
				)
			""")

			await self._db.execute("""
				CREATE INDEX IF NOT EXISTS idx_sessions_mission ON sessions(mission_id)
			""")

			await self._db.execute("""
				CREATE INDEX IF NOT EXISTS idx_checkpoints_session ON checkpoints(session_id, created_at)
			""")

			await self._db.commit()
		except (sqlite3.Error, OSError) as exc:
			raise PersistenceError(f"Failed to open session store {self.db_path}: {exc}") from exc

		logger.info(f"Session store initialized: {self.db_path}")

	async def close(self) -> None:
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def __aenter__(self) -> "SessionStore":
		await self.init()
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.close()

	async def _connection(self) -> aiosqlite.Connection:
		if self._db is None:
			await self.init()
		return self._db

	async def put_session(self, state: SessionState) -> None:
		"""Insert or overwrite the latest record for a session."""
		db = await self._connection()
		data = state.model_dump_json()
		try:
			await db.execute(
				"""
				INSERT INTO sessions (session_id, mission_id, phase, data, created_at, updated_at)
				VALUES (?, ?, ?, ?, ?, datetime('now'))
				ON CONFLICT(session_id) DO UPDATE SET
					mission_id = excluded.mission_id,
					phase = excluded.phase,
					data = excluded.data,
					updated_at = excluded.updated_at
				""",
				(
					state.session_id,
					state.mission_id,
					state.current_phase.value,
					data,
					state.timestamp.isoformat(timespec="microseconds"),
				),
			)
			await db.commit()
		except sqlite3.Error as exc:
			raise PersistenceError(f"Failed to save session {state.session_id}: {exc}") from exc

	async def get_session(self, session_id: str) -> Optional[SessionState]:
		"""Get the latest record for a session, or None."""
		db = await self._connection()
		try:
			async with db.execute(
				"SELECT data FROM sessions WHERE session_id = ?",
				(session_id,),
			) as cursor:
				row = await cursor.fetchone()
		except sqlite3.Error as exc:
			raise PersistenceError(f"Failed to load session {session_id}: {exc}") from exc

		if not row:
			return None
		return self._decode(row["data"], session_id)

	async def list_sessions(self) -> list[SessionState]:
		"""All stored sessions, oldest first."""
		db = await self._connection()
		try:
			async with db.execute(
				"SELECT session_id, data FROM sessions ORDER BY created_at, rowid"
			) as cursor:
				rows = await cursor.fetchall()
		except sqlite3.Error as exc:
			raise PersistenceError(f"Failed to list sessions: {exc}") from exc

		return [self._decode(row["data"], row["session_id"]) for row in rows]

	async def append_checkpoint(self, state: SessionState, created_at: datetime) -> str:
		"""
		Append an immutable snapshot of `state` to the checkpoint history.

		Args:
			state: Session state to snapshot
			created_at: Checkpoint creation time

		Returns:
			The checkpoint key ({session_id}-{timestamp})
		"""
		db = await self._connection()
		key = checkpoint_key(state.session_id, created_at)
		try:
			await db.execute(
				"""
				INSERT INTO checkpoints (checkpoint_key, session_id, phase, iterations, data, created_at)
				VALUES (?, ?, ?, ?, ?, ?)
				""",
				(
					key,
					state.session_id,
					state.current_phase.value,
					state.iterations,
					state.model_dump_json(),
					created_at.isoformat(timespec="microseconds"),
				),
			)
			await db.commit()
		except sqlite3.Error as exc:
			raise PersistenceError(f"Failed to write checkpoint for {state.session_id}: {exc}") from exc
		return key

	async def get_latest_checkpoint(self, session_id: str) -> Optional[SessionState]:
		"""Newest checkpoint snapshot for a session, or None."""
		db = await self._connection()
		try:
			async with db.execute(
				"""
				SELECT data FROM checkpoints
				WHERE session_id = ?
				ORDER BY created_at DESC, id DESC
				LIMIT 1
				""",
				(session_id,),
			) as cursor:
				row = await cursor.fetchone()
		except sqlite3.Error as exc:
			raise PersistenceError(f"Failed to read checkpoints for {session_id}: {exc}") from exc

		if not row:
			return None
		return self._decode(row["data"], session_id)

	async def list_checkpoints(self, session_id: str) -> list[CheckpointRecord]:
		"""Checkpoint metadata for a session, newest first."""
		db = await self._connection()
		try:
			async with db.execute(
				"""
				SELECT checkpoint_key, session_id, created_at, phase, iterations
				FROM checkpoints
				WHERE session_id = ?
				ORDER BY created_at DESC, id DESC
				""",
				(session_id,),
			) as cursor:
				rows = await cursor.fetchall()
		except sqlite3.Error as exc:
			raise PersistenceError(f"Failed to list checkpoints for {session_id}: {exc}") from exc

		return [
			CheckpointRecord(
				key=row["checkpoint_key"],
				session_id=row["session_id"],
				created_at=row["created_at"],
				phase=row["phase"],
				iterations=row["iterations"],
			)
			for row in rows
		]

	@staticmethod
	def _decode(data: str, session_id: str) -> SessionState:
		try:
			return SessionState.model_validate_json(data)
		except ValidationError as exc:
			raise SessionCorruptedError(f"Stored session {session_id} is unreadable: {exc}") from exc
