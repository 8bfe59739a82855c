"""Tests for the operation audit log."""
import pytest

from topocraft.engine import (
    Operation,
    OperationAction,
    OperationResult,
    OperationStatus,
    RemoteHandle,
    ResourceKind,
    define_resource,
)
from topocraft.utils.audit_log import (
    OperationRecord,
    get_recent_operations,
    record_operation,
    setup_audit_logging,
)


def result(name, status=OperationStatus.APPLIED, error=None):
    op = Operation(
        index=0,
        action=OperationAction.CREATE,
        resource=define_resource("LogSink", name, {"group_name": f"/{name}"}),
        changes={},
    )
    return OperationResult(
        operation=op,
        status=status,
        error=error,
        attempts=1,
        handle=RemoteHandle(ResourceKind.LOG_SINK, name, f"ls-{name}"),
    )


@pytest.fixture
def log_file(tmp_path):
    path = str(tmp_path / "audit" / "audit.log")
    setup_audit_logging(path)
    return path


class TestAuditLog:
    """Tests for recording and reading operations."""

    def test_record_round_trip(self, log_file):
        written = record_operation(result("logs"), run_id="run1")

        records = get_recent_operations(log_file)

        assert records == [written]
        assert records[0].status == "applied"
        assert records[0].remote_id == "ls-logs"
        assert records[0].dry_run is False

    def test_most_recent_first_and_limit(self, log_file):
        for i in range(5):
            record_operation(result(f"logs-{i}"), run_id="run1")

        records = get_recent_operations(log_file, limit=2)

        assert [r.name for r in records] == ["logs-4", "logs-3"]

    def test_filters(self, log_file):
        record_operation(result("a"), run_id="run1")
        record_operation(result("b", OperationStatus.FAILED, "boom"), run_id="run1")

        assert [r.name for r in get_recent_operations(log_file, name="a")] == ["a"]
        failed = get_recent_operations(log_file, status="failed")
        assert [r.error for r in failed] == ["boom"]

    def test_malformed_lines_skipped(self, log_file):
        record_operation(result("a"), run_id="run1")
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("not json\n\n{\"unexpected\": 1}\n")

        assert [r.name for r in get_recent_operations(log_file)] == ["a"]

    def test_missing_log(self, tmp_path):
        assert get_recent_operations(str(tmp_path / "none.log")) == []

    def test_record_json(self):
        record = OperationRecord(
            timestamp="2024-01-01T00:00:00+00:00",
            run_id="r",
            action="delete",
            kind="Network",
            name="vpc",
            status="skipped",
            dry_run=True,
        )
        assert OperationRecord.from_json(record.to_json()) == record
