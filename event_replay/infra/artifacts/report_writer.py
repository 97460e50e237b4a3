from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from event_replay import __version__
from event_replay.domain.reporting.collector import ReportCollector, asdict_report


def createEmptyReport(runId: str, command: str, configSources: list[str]) -> ReportCollector:
    """Отчёт запуска с версией приложения и списком источников конфигурации."""
    collector = ReportCollector(run_id=runId, command=command)
    collector.set_meta(app_version=__version__)
    if configSources:
        collector.set_context("config", {"sources": configSources})
    return collector


def finalizeReport(report: ReportCollector, durationMs: int, logFile: str | None, reportDir: str, outputDir: str) -> None:
    """Дописывает пути артефактов в context.runtime и закрывает отчёт."""
    report.set_context(
        "runtime",
        {
            "log_file": logFile,
            "report_dir": reportDir,
            "output_dir": outputDir,
        },
    )
    report.finish(duration_ms=durationMs)


def writeReportJson(report: ReportCollector, reportDir: str, fileBaseName: str) -> str:
    """Пишет <reportDir>/<fileBaseName>.json и возвращает путь."""
    Path(reportDir).mkdir(parents=True, exist_ok=True)
    reportPath = str(Path(reportDir) / f"{fileBaseName}.json")

    data: dict[str, Any] = asdict_report(report.build())

    with open(reportPath, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)

    return reportPath
