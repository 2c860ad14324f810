"""
Audit Logger

Every committed change to cycles and transactions is logged, together
with the commands the repository refused or ignored. This provides:
1. Traceability of every write
2. Debugging capability when a ledger looks wrong

The audit logger:
- Logs structured events through structlog
- Is attached to the change notifier, so it sees exactly what was committed
- Never raises into the write path
"""

import logging
from typing import Optional

import structlog

from cycle_ledger.config import get_settings
from cycle_ledger.models.events import ChangeEvent
from cycle_ledger.services.notifier import ChangeNotifier


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog for the package.

    Args:
        level: Minimum level for the ``cycle_ledger`` loggers.
               Defaults to the configured application log level.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    level = level or get_settings().app.log_level
    logging.getLogger("cycle_ledger").setLevel(level)


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs change events and refused/ignored commands as structured records.
    """

    def __init__(self):
        self._logger = structlog.get_logger("cycle_ledger.audit")

    def attach(self, notifier: ChangeNotifier) -> None:
        """Log every event the notifier publishes from now on."""
        notifier.add_listener(self.log_change)

    def detach(self, notifier: ChangeNotifier) -> None:
        notifier.remove_listener(self.log_change)

    def log_change(self, event: ChangeEvent) -> None:
        """Log a committed change."""
        self._logger.info("change_committed", **event.to_log_dict())

    def log_constraint_violation(
        self,
        year: int,
        month: int,
        error_message: str,
    ) -> None:
        """Log a refused cycle write (duplicate period)."""
        self._logger.warning(
            "constraint_violation",
            year=year,
            month=month,
            error_message=error_message,
        )

    def log_missing_record(
        self,
        operation: str,
        record_type: str,
        record_id: Optional[int],
    ) -> None:
        """Log an update/delete that found nothing to change."""
        self._logger.info(
            "missing_record_ignored",
            operation=operation,
            record_type=record_type,
            record_id=record_id,
        )
