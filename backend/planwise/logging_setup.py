"""Logging configuration for the PlanWise API.

JSON lines in production, one readable line per record in development.
Modules log through ``logging.getLogger(__name__)`` so everything lands under
the ``planwise`` namespace.
"""

import json
import logging
import sys
from datetime import datetime, timezone


def _format_timestamp(record: logging.LogRecord) -> str:
	return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:
		payload = {
			"timestamp": _format_timestamp(record),
			"level": record.levelname,
			"logger": record.name,
			"message": record.getMessage(),
		}
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:
		line = f"{_format_timestamp(record)} {record.levelname} [{record.name}] {record.getMessage()}"
		if record.exc_info:
			line = f"{line}\n{self.formatException(record.exc_info)}"
		return line


def configure_logging(env: str = "development", level: str = "INFO") -> None:
	logger = logging.getLogger("planwise")
	logger.setLevel(level.upper())

	formatter: logging.Formatter
	if env == "production":
		formatter = JsonFormatter()
	else:
		formatter = PrettyFormatter()

	# Reconfiguring replaces the previous handler instead of stacking a new one
	for handler in list(logger.handlers):
		logger.removeHandler(handler)
	handler = logging.StreamHandler(sys.stdout)
	handler.setFormatter(formatter)
	logger.addHandler(handler)
	logger.propagate = False

	logging.getLogger("passlib").setLevel(logging.ERROR)
	logging.getLogger("httpx").setLevel(logging.WARNING)
