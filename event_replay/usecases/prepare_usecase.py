from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace

from event_replay.channels.base import ChannelSpec
from event_replay.common.time import epochMsToIso, nowEpochMs
from event_replay.domain.dispatch.models import DeliveryMode, DispatchUnit
from event_replay.domain.models import DiagnosticItem, DiagnosticStage, RawRecord, ValidationResult
from event_replay.domain.run_config import RunConfiguration
from event_replay.domain.timestamps import parse_epoch_ms
from event_replay.domain.validation.fields import CONVERSION_TIME
from event_replay.domain.validation.validator import RecordValidator, logValidationOutcome
from event_replay.infra.logging.setup import logEvent
from event_replay.infra.sources.csv_reader import ParsedCsv

PAYLOAD_DEBUG_SAMPLE = 3


@dataclass
class PreparedRun:
    """
    Назначение:
        Всё, что известно до первого HTTP-вызова: итоговая конфигурация,
        вердикты валидатора и готовые unit.
    """

    config: RunConfiguration
    records: list[RawRecord]
    validations: list[ValidationResult] = field(default_factory=list)
    units: list[DispatchUnit] = field(default_factory=list)
    build_warnings: dict[int, list[DiagnosticItem]] = field(default_factory=dict)
    notices: list[str] = field(default_factory=list)

    @property
    def total_records(self) -> int:
        return len(self.records)

    @property
    def rejected(self) -> list[tuple[RawRecord, ValidationResult]]:
        return [(r, v) for r, v in zip(self.records, self.validations) if v.rejected]

    @property
    def calls_planned(self) -> int:
        if not self.units:
            return 0
        return math.ceil(len(self.units) / max(1, self.config.batch_size))

    @property
    def estimated_minutes(self) -> int:
        return math.ceil(self.calls_planned / self.config.rate_per_minute) if self.calls_planned else 0


def effective_configuration(parsed: ParsedCsv, config: RunConfiguration) -> tuple[RunConfiguration, str | None]:
    """use_conversion_time без колонки conversionTime в CSV выключается с уведомлением."""
    if config.use_conversion_time and not parsed.has_column(CONVERSION_TIME):
        notice = "conversionTime column not found in CSV; using current time for all events"
        return replace(config, use_conversion_time=False), notice
    return config, None


def prepare_run(
    parsed: ParsedCsv,
    channel: ChannelSpec,
    config: RunConfiguration,
    *,
    logger: logging.Logger,
    run_id: str,
    validator: RecordValidator | None = None,
    now_ms: int | None = None,
) -> PreparedRun:
    """
    Назначение:
        Прогоняет записи через валидатор и сборщик payload канала.

    Алгоритм:
        1) Эффективная конфигурация (fallback use_conversion_time при отсутствии колонки).
        2) Для каждой записи: validate -> отклонённые остаются без unit,
           принятые получают payload и номер вызова первого прохода.
        3) Предупреждения валидатора и сборщика логируются по записи.
    """
    validator = validator or RecordValidator()
    now = now_ms if now_ms is not None else nowEpochMs()
    config, notice = effective_configuration(parsed, config)
    prepared = PreparedRun(config=config, records=list(parsed.records))
    batch_size = 1 if channel.mode == DeliveryMode.SINGLE else config.batch_size

    for warning in parsed.warnings:
        logEvent(logger, logging.WARNING, run_id, "csv", warning)
    if notice:
        prepared.notices.append(notice)
        logEvent(logger, logging.WARNING, run_id, "prepare", notice)
    if config.use_conversion_time:
        _log_conversion_time_sample(parsed.records, logger, run_id)

    for record in prepared.records:
        validation = validator.validate(record, record.index, config, now_ms=now)
        prepared.validations.append(validation)
        logValidationOutcome(logger, run_id, "validate", record, validation)
        if validation.rejected:
            continue

        built = channel.build_payload(record, validation, config, now)
        if built.warnings:
            prepared.build_warnings[record.index] = [
                DiagnosticItem(DiagnosticStage.BUILD, "TIMESTAMP_FALLBACK", CONVERSION_TIME, w) for w in built.warnings
            ]
            for w in built.warnings:
                logEvent(logger, logging.WARNING, run_id, "build", f"record {record.index + 1}: {w}")
        for note in built.notes:
            logEvent(logger, logging.INFO, run_id, "build", f"record {record.index + 1}: {note}")

        unit = DispatchUnit(
            record_index=record.index,
            line_no=record.line_no,
            batch_index=len(prepared.units) // batch_size + 1,
            email=record.email,
            payload=built.body,
            source=record.as_dict(),
        )
        if len(prepared.units) < PAYLOAD_DEBUG_SAMPLE:
            logEvent(logger, logging.DEBUG, run_id, "build", f"payload for record {record.index + 1}: {built.body}")
        prepared.units.append(unit)

    logEvent(
        logger,
        logging.INFO,
        run_id,
        "prepare",
        f"records={prepared.total_records} valid={len(prepared.units)} "
        f"rejected={prepared.total_records - len(prepared.units)} calls={prepared.calls_planned}",
    )
    return prepared


def _log_conversion_time_sample(records: list[RawRecord], logger: logging.Logger, run_id: str) -> None:
    sample: list[str] = []
    for record in records[:3]:
        parsed = parse_epoch_ms(record.get(CONVERSION_TIME))
        sample.append(epochMsToIso(parsed) if parsed is not None else "(empty)")
    if sample:
        logEvent(logger, logging.INFO, run_id, "prepare", f"conversionTime sample: {', '.join(sample)}")
