from __future__ import annotations

import logging

from event_replay.infra.logging.setup import logEvent
from event_replay.usecases.prepare_usecase import PreparedRun


class ValidateUseCase:
    """
    Назначение/ответственность:
        Сухой прогон: разбор + валидация + сборка payload без сети.
        В отчёт попадают отклонённые записи и записи с предупреждениями.
    """

    def run(self, prepared: PreparedRun, parsed_dropped: int, logger: logging.Logger, run_id: str, report) -> int:
        summary = report.summary
        summary.records_total = prepared.total_records
        summary.records_valid = len(prepared.units)
        summary.records_ok = len(prepared.units)
        summary.dropped_lines = parsed_dropped

        for record, validation in zip(prepared.records, prepared.validations):
            build_warnings = prepared.build_warnings.get(record.index, [])
            warnings = [*validation.warning_items, *build_warnings]
            report.count_diagnostics(validation.error_items, warnings)
            if validation.rejected or warnings:
                report.add_item(
                    status="INVALID" if validation.rejected else "VALID",
                    record_index=record.index,
                    line_no=record.line_no,
                    errors=validation.error_items,
                    warnings=warnings,
                    meta={"include_user_info": validation.include_user_info},
                )

        rejected = prepared.total_records - len(prepared.units)
        logEvent(
            logger,
            logging.INFO,
            run_id,
            "validate",
            f"validate done: records={prepared.total_records} valid={len(prepared.units)} rejected={rejected}",
        )
        return 1 if rejected > 0 else 0
