from __future__ import annotations

from dataclasses import asdict
from typing import Any, Iterable

from event_replay.common.time import getNowIso
from event_replay.domain.models import DiagnosticItem, DiagnosticStage
from event_replay.domain.reporting.aggregator import AggregateSnapshot
from event_replay.domain.reporting.models import (
    ReportDiagnostic,
    ReportEnvelope,
    ReportItem,
    ReportMeta,
    ReportSummary,
)


class ReportCollector:
    """
    Назначение/ответственность:
        Единый сборщик отчёта для всех команд (validate, send, check-api).

    Ограничения:
        - items хранит только проблемные записи (SKIPPED/FAILED/INVALID) и
          не больше items_limit; превышение отмечается в meta.items_truncated.
    """

    def __init__(self, run_id: str, command: str, started_at: str | None = None) -> None:
        self.meta = ReportMeta(run_id=run_id, command=command, started_at=started_at or getNowIso())
        self.summary = ReportSummary()
        self.items: list[ReportItem] = []
        self.context: dict[str, Any] = {}
        self.status: str | None = None

    def set_meta(
        self,
        *,
        channel: str | None = None,
        csv_path: str | None = None,
        items_limit: int | None = None,
        app_version: str | None = None,
    ) -> None:
        if channel is not None:
            self.meta.channel = channel
        if csv_path is not None:
            self.meta.csv_path = csv_path
        if items_limit is not None:
            self.meta.items_limit = items_limit
        if app_version is not None:
            self.meta.app_version = app_version

    def set_context(self, name: str, value: dict[str, Any]) -> None:
        self.context[name] = value

    def count_diagnostics(self, errors: Iterable[DiagnosticItem], warnings: Iterable[DiagnosticItem]) -> None:
        error_list = list(errors)
        warning_list = list(warnings)
        self.summary.errors_total += len(error_list)
        self.summary.warnings_total += len(warning_list)
        if warning_list:
            self.summary.rows_with_warnings += 1
        for item in error_list:
            self._count_stage(item.stage, "errors_total")
        for item in warning_list:
            self._count_stage(item.stage, "warnings_total")

    def add_item(
        self,
        *,
        status: str,
        record_index: int | None = None,
        line_no: int | None = None,
        errors: Iterable[DiagnosticItem] | None = None,
        warnings: Iterable[DiagnosticItem] | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        if not self._should_store_item():
            self.meta.items_truncated = True
            return
        diagnostics = [self._from_item(e, "error") for e in (errors or [])]
        diagnostics.extend(self._from_item(w, "warning") for w in (warnings or []))
        self.items.append(
            ReportItem(
                status=status,
                record_index=record_index,
                line_no=line_no,
                diagnostics=diagnostics,
                meta=meta or {},
            )
        )

    def apply_snapshot(self, snapshot: AggregateSnapshot) -> None:
        """Переносит счётчики агрегатора в summary."""
        self.summary.records_total = snapshot.total_records
        self.summary.sent = snapshot.sent
        self.summary.failed = snapshot.failed
        self.summary.skipped = snapshot.skipped
        self.summary.cancelled = snapshot.cancelled
        self.summary.retried = snapshot.retried
        self.summary.calls_total = snapshot.calls_total
        self.summary.progress_pct = round(snapshot.progress_pct, 1)
        self.summary.success_rate_pct = round(snapshot.success_rate_pct, 1)
        self.summary.status_codes = dict(snapshot.status_codes)
        self.summary.failure_groups = [
            {"key": g.key, "count": g.count, "share_pct": round(g.share_pct, 1)} for g in snapshot.failure_groups
        ]
        self.summary.records_ok = snapshot.sent

    def finish(self, finished_at: str | None = None, duration_ms: int | None = None) -> None:
        self.meta.finished_at = finished_at or getNowIso()
        self.meta.duration_ms = duration_ms
        if self.status is None:
            self.status = self._derive_status()

    def build(self) -> ReportEnvelope:
        return ReportEnvelope(
            status=self.status or self._derive_status(),
            meta=self.meta,
            summary=self.summary,
            items=self.items,
            context=self.context,
        )

    def _should_store_item(self) -> bool:
        limit = self.meta.items_limit
        if limit is None:
            return True
        return len(self.items) < limit

    def _derive_status(self) -> str:
        problems = self.summary.failed + self.summary.skipped
        if self.meta.command == "validate":
            problems = self.summary.records_total - self.summary.records_valid
        if problems == 0:
            return "SUCCESS"
        if self.summary.records_ok > 0:
            return "PARTIAL"
        return "FAILED"

    def _count_stage(self, stage: DiagnosticStage, field: str) -> None:
        key = stage.value if isinstance(stage, DiagnosticStage) else str(stage)
        entry = self.summary.by_stage.setdefault(key, {"errors_total": 0, "warnings_total": 0})
        entry[field] += 1

    @staticmethod
    def _from_item(item: DiagnosticItem, severity: str) -> ReportDiagnostic:
        return ReportDiagnostic(
            severity=severity,
            stage=item.stage,
            code=item.code,
            field=item.field,
            message=item.message,
        )


def asdict_report(envelope: ReportEnvelope) -> dict[str, Any]:
    """
    Назначение:
        Сериализация отчёта в JSON-совместимый dict (enum -> value).
    """
    return {
        "status": envelope.status,
        "meta": asdict(envelope.meta),
        "summary": asdict(envelope.summary),
        "items": [
            {
                "status": item.status,
                "record_index": item.record_index,
                "line_no": item.line_no,
                "diagnostics": [
                    {**asdict(diag), "stage": diag.stage.value if isinstance(diag.stage, DiagnosticStage) else diag.stage}
                    for diag in item.diagnostics
                ],
                "meta": item.meta,
            }
            for item in envelope.items
        ],
        "context": envelope.context,
    }
