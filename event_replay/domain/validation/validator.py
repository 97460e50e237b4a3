from __future__ import annotations

import logging

from event_replay.common.time import nowEpochMs
from event_replay.domain.models import RawRecord, ValidationResult
from event_replay.domain.run_config import RunConfiguration
from event_replay.domain.validation.rules import DEFAULT_RULES, RecordRule, ValidationState


class RecordValidator:
    """
    Назначение/ответственность:
        Решает, допускается ли запись к отправке и какие группы полей подавить.
        Чистая функция от (record, config, now): без I/O и без состояния между вызовами.

    Алгоритм:
        - Правила применяются все и в фиксированном порядке (email, userInfo, время, валюта).
        - Запись принята, если ни одно правило не добавило ошибку.
    """

    def __init__(self, rules: tuple[RecordRule, ...] = DEFAULT_RULES) -> None:
        self.rules = rules

    def validate(
        self,
        record: RawRecord,
        index: int,
        config: RunConfiguration,
        now_ms: int | None = None,
    ) -> ValidationResult:
        now = now_ms if now_ms is not None else nowEpochMs()
        state = ValidationState()
        for rule in self.rules:
            rule.apply(record, state, config, now)
        return ValidationResult(
            record_index=index,
            accepted=not state.errors,
            include_user_info=state.include_user_info,
            reasons=tuple(item.message for item in state.errors),
            warnings=tuple(item.message for item in state.warnings),
            diagnostics=tuple([*state.errors, *state.warnings]),
        )


def logValidationOutcome(
    logger: logging.Logger,
    run_id: str,
    context: str,
    record: RawRecord,
    result: ValidationResult,
) -> None:
    """
    Назначение:
        Логирует отказ или предупреждения по записи (номер записи с 1, как в консоли).
    """
    label = f"record {record.index + 1} line={record.line_no} ({record.email or 'no email'})"
    extra = {"runId": run_id, "component": context}
    if result.warnings:
        logger.log(logging.WARNING, f"{label} warnings: {'; '.join(result.warnings)}", extra=extra)
    if result.rejected:
        logger.log(logging.WARNING, f"skipping {label}: {'; '.join(result.reasons)}", extra=extra)
