from __future__ import annotations

from event_replay.domain.models import RawRecord, ValidationResult
from event_replay.domain.payload.models import BuiltPayload
from event_replay.domain.run_config import RunConfiguration
from event_replay.domain.timestamps import resolve_conversion_time
from event_replay.domain.validation.currency import evaluate_currency
from event_replay.domain.validation.fields import (
    CONVERSION_TIME,
    CONVERSION_VALUE,
    CURRENCY_CODE,
    CURRENCY_FIELDS,
    USER_INFO_FIELDS,
)


def build_flat_payload(
    record: RawRecord,
    validation: ValidationResult,
    config: RunConfiguration,
    now_ms: int,
) -> BuiltPayload:
    """
    Назначение:
        Плоский payload для webhook: каждое непустое поле записи как строковый ключ верхнего уровня.

    Правила:
        - userInfo-поля выкидываются при include_user_info=False;
        - currencyCode/conversionValue только если пара валидна (код приводится к upper);
        - conversionTime: при use_conversion_time значение по общей политике времени,
          иначе исходное значение как есть (если непустое).
    """
    if validation.rejected:
        raise ValueError(f"record {record.index} was rejected and cannot be built")

    currency = evaluate_currency(record.values)
    body: dict[str, str] = {}
    time_source: str | None = None
    warnings: list[str] = []
    notes: list[str] = []

    for key, value in record.values.items():
        if key in USER_INFO_FIELDS and not validation.include_user_info:
            continue
        if key in CURRENCY_FIELDS:
            if currency.include:
                if key == CURRENCY_CODE:
                    body[key] = currency.currency_code or ""
                elif key == CONVERSION_VALUE:
                    body[key] = value.strip()
            continue
        if key == CONVERSION_TIME and config.use_conversion_time:
            resolution = resolve_conversion_time(
                value,
                use_conversion_time=True,
                reset_old_timestamps=config.reset_old_timestamps,
                now_ms=now_ms,
            )
            body[key] = str(resolution.value)
            time_source = resolution.source
            if resolution.warning:
                warnings.append(resolution.warning)
            if resolution.note:
                notes.append(resolution.note)
            continue
        if value is None or value.strip() == "":
            continue
        body[key] = value

    return BuiltPayload(body=body, time_source=time_source, warnings=tuple(warnings), notes=tuple(notes))
