"""Audit bridge — records every validated envelope to an audit sink.

Bridge boundary
---------------
The broker calls ``AuditHook.record(envelope)`` synchronously for each
envelope that passes validation, before local handlers and dispatch.  The
broker contains any exception raised here, so an audit sink can never block
delivery; sinks should still log and swallow their own I/O errors.

``JsonlAuditLog`` appends one canonical JSON line per envelope to
``{log_dir}/ipc-audit-YYYY-MM-DD.log``.  Only the configured critical
domains are recorded, which keeps the file volume down; swap in another
``AuditHook`` (Kafka, ELK, ...) for full coverage.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

from ipcbus.config import BusConfig
from ipcbus.core.codec import canonical_json_bytes
from ipcbus.models.envelopes import Envelope

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_DOMAINS: tuple[str, ...] = ("crm", "risk", "ticket")


@runtime_checkable
class AuditHook(Protocol):
    """One-way audit sink."""

    def record(self, envelope: Envelope) -> None:
        """Record an envelope that passed validation."""
        ...


class JsonlAuditLog:
    """Appends audited envelopes to a daily JSONL file.

    Parameters
    ----------
    log_dir:
        Directory for the daily log files.  Created if missing.
    domains:
        Domains to record.  ``None`` records every domain.
    """

    def __init__(
        self,
        log_dir: Path | str = Path("logs"),
        domains: Iterable[str] | None = DEFAULT_AUDIT_DOMAINS,
    ) -> None:
        self._dir = Path(log_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._domains = frozenset(domains) if domains is not None else None

    @property
    def log_dir(self) -> Path:
        return self._dir

    def log_file_path(self, when: datetime | None = None) -> Path:
        day = (when or datetime.now()).strftime("%Y-%m-%d")
        return self._dir / f"ipc-audit-{day}.log"

    def is_recorded(self, envelope: Envelope) -> bool:
        return self._domains is None or envelope.domain in self._domains

    def record(self, envelope: Envelope) -> None:
        if not self.is_recorded(envelope):
            return
        line = canonical_json_bytes(envelope.to_wire()) + b"\n"
        try:
            with self.log_file_path().open("ab") as fh:
                fh.write(line)
        except OSError:
            logger.exception("Audit write failed for envelope %s", envelope.id)

    def read_entries(self, when: datetime | None = None) -> list[Envelope]:
        """Read back one day's audited envelopes."""
        path = self.log_file_path(when)
        if not path.exists():
            return []
        return [
            Envelope.model_validate_json(line)
            for line in path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]


def audit_from_settings(
    settings: BusConfig, log_dir: Path | str | None = None
) -> JsonlAuditLog | None:
    """Build the configured audit log, or ``None`` when auditing is disabled."""
    if not settings.audit_enabled:
        logger.info("Audit disabled by configuration")
        return None
    return JsonlAuditLog(log_dir or settings.audit_log_dir, settings.audit_domains)
