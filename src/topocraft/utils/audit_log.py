"""Audit logging for provisioning operations.

Every operation the executor finishes (applied, failed or skipped) is
written as one JSON line to a dedicated audit log, separate from the
application log.
"""
import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..engine.schema import OperationResult

# Create dedicated audit logger
audit_logger = logging.getLogger("topocraft.audit")

DEFAULT_AUDIT_DIR = Path.home() / ".topocraft"


def default_audit_file() -> str:
    return os.environ.get(
        "TOPOCRAFT_AUDIT_LOG", str(DEFAULT_AUDIT_DIR / "audit.log")
    )


def setup_audit_logging(log_file: Optional[str] = None) -> str:
    """Configure audit logging to file.

    Args:
        log_file: Path of the audit log. Defaults to ~/.topocraft/audit.log

    Returns:
        The path being written to
    """
    log_file = log_file or default_audit_file()
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    audit_logger.setLevel(logging.INFO)

    # Remove existing handlers
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()

    handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )

    # Use JSON format for machine-readability
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)

    # Don't propagate to application log
    audit_logger.propagate = False
    return log_file


@dataclass
class OperationRecord:
    """Audit record of one provisioning operation."""
    timestamp: str
    run_id: str
    action: str  # create, update, delete
    kind: str
    name: str
    status: str  # applied, failed, skipped
    dry_run: bool
    replace: bool = False
    changed: Optional[list] = None
    remote_id: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), indent=None)

    @classmethod
    def from_json(cls, json_str: str) -> "OperationRecord":
        """Parse from JSON string."""
        data = json.loads(json_str)
        return cls(**data)

    @classmethod
    def from_result(cls, result: "OperationResult", run_id: str, dry_run: bool) -> "OperationRecord":
        op = result.operation
        handle = result.handle or op.handle
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            run_id=run_id,
            action=op.action.value,
            kind=op.resource.kind.value,
            name=op.resource.name,
            status=result.status.value,
            dry_run=dry_run,
            replace=op.replace,
            changed=sorted(op.changes),
            remote_id=handle.remote_id if handle else None,
            attempts=result.attempts,
            error=result.error,
        )


def record_operation(result: "OperationResult", run_id: str, dry_run: bool = False) -> OperationRecord:
    """Write one finished operation to the audit log."""
    record = OperationRecord.from_result(result, run_id, dry_run)
    audit_logger.info(record.to_json())
    return record


def get_recent_operations(
    log_file: Optional[str] = None,
    name: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
) -> list[OperationRecord]:
    """Read recent operations from the audit log.

    Args:
        log_file: Path to audit log. Defaults to ~/.topocraft/audit.log
        name: Filter by resource name
        status: Filter by final status
        limit: Maximum number of records to return

    Returns:
        List of OperationRecords, most recent first
    """
    log_file = log_file or default_audit_file()

    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = OperationRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if name and record.name != name:
                continue
            if status and record.status != status:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
