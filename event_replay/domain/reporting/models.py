from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from event_replay.domain.models import DiagnosticStage


@dataclass
class ReportMeta:
    """
    Назначение:
        Метаданные запуска команды.
    """

    run_id: str
    command: str
    started_at: str
    channel: str | None = None
    csv_path: str | None = None
    finished_at: str | None = None
    duration_ms: int | None = None
    items_limit: int | None = None
    items_truncated: bool = False
    app_version: str | None = None


@dataclass
class ReportSummary:
    """
    Назначение:
        Счётчики запуска: разбор, валидация, доставка.
    """

    records_total: int = 0
    records_valid: int = 0
    records_ok: int = 0
    dropped_lines: int = 0
    rows_with_warnings: int = 0
    warnings_total: int = 0
    errors_total: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0
    retried: int = 0
    calls_total: int = 0
    progress_pct: float = 0.0
    success_rate_pct: float = 0.0
    status_codes: dict[str, int] = field(default_factory=dict)
    failure_groups: list[dict[str, Any]] = field(default_factory=list)
    by_stage: dict[str, dict[str, int]] = field(default_factory=dict)


@dataclass(frozen=True)
class ReportDiagnostic:
    severity: str
    stage: DiagnosticStage
    code: str
    field: str | None
    message: str


@dataclass
class ReportItem:
    """
    Назначение:
        Единица отчёта, привязанная к конкретной записи CSV.
    """

    status: str
    record_index: int | None = None
    line_no: int | None = None
    diagnostics: list[ReportDiagnostic] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReportEnvelope:
    status: str
    meta: ReportMeta
    summary: ReportSummary
    items: list[ReportItem]
    context: dict[str, Any] = field(default_factory=dict)
