from __future__ import annotations

import hashlib
from typing import Any

from event_replay.domain.models import RawRecord, ValidationResult
from event_replay.domain.payload.models import BuiltPayload
from event_replay.domain.run_config import RunConfiguration
from event_replay.domain.timestamps import resolve_conversion_time
from event_replay.domain.validation.currency import evaluate_currency
from event_replay.domain.validation.fields import CONVERSION_TIME, USER_INFO_FIELDS

CONVERSION_URN_PREFIX = "urn:lla:llaPartnerConversion:"
HASHED_EMAIL_ID_TYPE = "SHA256_EMAIL"


def hash_email(email: str) -> str:
    """SHA-256 hex от email в нижнем регистре."""
    return hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()


def conversion_urn(conversion_id: str) -> str:
    return f"{CONVERSION_URN_PREFIX}{conversion_id}"


def build_capi_event(
    record: RawRecord,
    validation: ValidationResult,
    config: RunConfiguration,
    now_ms: int,
) -> BuiltPayload:
    """
    Назначение:
        Вложенное событие Conversions API для одной записи.

    Структура:
        conversion: URN из conversion_id
        conversionHappenedAt: epoch ms по общей политике времени
        conversionValue: {currencyCode, amount} только при валидной паре
        user.userIds: [{idType: SHA256_EMAIL, idValue: sha256(lower(email))}]
        user.userInfo: непустые поля группы, только если include_user_info
    """
    if validation.rejected:
        raise ValueError(f"record {record.index} was rejected and cannot be built")
    if not config.conversion_id:
        raise ValueError("conversion_id is required for CAPI events")

    resolution = resolve_conversion_time(
        record.get(CONVERSION_TIME),
        use_conversion_time=config.use_conversion_time,
        reset_old_timestamps=config.reset_old_timestamps,
        now_ms=now_ms,
    )

    event: dict[str, Any] = {
        "conversion": conversion_urn(config.conversion_id),
        "conversionHappenedAt": resolution.value,
        "user": {
            "userIds": [
                {
                    "idType": HASHED_EMAIL_ID_TYPE,
                    "idValue": hash_email(record.email),
                }
            ],
        },
    }

    currency = evaluate_currency(record.values)
    if currency.include:
        event["conversionValue"] = {
            "currencyCode": currency.currency_code,
            "amount": currency.amount_text,
        }

    if validation.include_user_info:
        user_info = {name: record.get(name) for name in USER_INFO_FIELDS if record.has_value(name)}
        if user_info:
            event["user"]["userInfo"] = user_info

    return BuiltPayload(
        body=event,
        time_source=resolution.source,
        warnings=(resolution.warning,) if resolution.warning else (),
        notes=(resolution.note,) if resolution.note else (),
    )
