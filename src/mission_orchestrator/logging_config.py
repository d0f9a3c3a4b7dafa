"""Logging for mission-orchestrator: stderr console plus an optional rotating file."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

ROOT_LOGGER = "mission_orchestrator"

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s:%(funcName)s:%(lineno)d | %(message)s"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3


class SecretRedactionFilter(logging.Filter):
	"""Redact known secret values (API keys) from log records."""

	def __init__(self, secrets: Iterable[str] = ()):
		super().__init__()
		self.secrets = [s for s in secrets if s]

	def filter(self, record: logging.LogRecord) -> bool:
		if not self.secrets:
			return True
		message = record.getMessage()
		redacted = message
		for secret in self.secrets:
			redacted = redacted.replace(secret, "[REDACTED]")
		if redacted != message:
			record.msg = redacted
			record.args = None
		return True


def _attach(
	logger: logging.Logger,
	handler: logging.Handler,
	level: int,
	fmt: str,
	datefmt: str,
	redaction: logging.Filter,
) -> None:
	handler.setLevel(level)
	handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
	handler.addFilter(redaction)
	logger.addHandler(handler)


def setup_logging(
	level: str = "INFO",
	log_dir: Optional[str | Path] = None,
	name: str = ROOT_LOGGER,
	secrets: Iterable[str] = (),
) -> logging.Logger:
	"""
	Configure the package logger once per process.

	The console handler writes to stderr at `level` so rich output on stdout
	stays readable. When `log_dir` is given, `<log_dir>/<name>.log` also
	receives every DEBUG record. Repeated calls return the already
	configured logger untouched.

	Args:
		level: Console level name (DEBUG, INFO, WARNING, ERROR)
		log_dir: Where the rotating log file lives, or None for console only
		name: Logger name, also used for the file name
		secrets: Values replaced by [REDACTED] in every handler
	"""
	console_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(name)
	logger.setLevel(logging.DEBUG if log_dir else console_level)
	if logger.handlers:
		return logger

	redaction = SecretRedactionFilter(secrets)
	_attach(logger, logging.StreamHandler(sys.stderr), console_level, CONSOLE_FORMAT, "%H:%M:%S", redaction)

	if log_dir:
		directory = Path(log_dir)
		directory.mkdir(parents=True, exist_ok=True)
		rotating = RotatingFileHandler(
			directory / f"{name}.log",
			maxBytes=LOG_FILE_MAX_BYTES,
			backupCount=LOG_FILE_BACKUPS,
			encoding="utf-8",
		)
		_attach(logger, rotating, logging.DEBUG, FILE_FORMAT, "%Y-%m-%dT%H:%M:%S", redaction)

	return logger
