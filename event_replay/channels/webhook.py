from __future__ import annotations

from typing import Sequence

from event_replay.domain.dispatch.models import DeliveryMode, DispatchOutcome, DispatchUnit
from event_replay.domain.error_codes import ErrorCode
from event_replay.domain.models import RawRecord, ValidationResult
from event_replay.domain.payload.flat import build_flat_payload
from event_replay.domain.payload.models import BuiltPayload
from event_replay.domain.ports.execution import ExecutionResult, RequestSpec
from event_replay.domain.run_config import ChannelKind, RunConfiguration

JSON_HEADERS = {"Content-Type": "application/json"}


def is_success_status(status_code: int | None) -> bool:
    return status_code is not None and 200 <= status_code <= 299


def call_failure_message(result: ExecutionResult) -> str:
    """Текст ошибки вызова целиком: сообщение исполнителя или HTTP n / Network error."""
    if result.error_message:
        return result.error_message
    if result.status_code is None:
        return "Network error"
    return f"HTTP {result.status_code}"


def extract_response_id(response_json: object) -> str | None:
    if isinstance(response_json, dict):
        value = response_json.get("id")
        if value is not None and value != "":
            return str(value)
    return None


class WebhookChannel:
    """
    Назначение/ответственность:
        Канал «плоский JSON на webhook»: один POST на запись, успех = любой 2xx.
    """

    kind = ChannelKind.WEBHOOK
    mode = DeliveryMode.SINGLE

    def __init__(self, url: str, timeout_seconds: float = 30.0):
        self.url = url
        self.timeout_seconds = timeout_seconds

    def build_payload(
        self,
        record: RawRecord,
        validation: ValidationResult,
        config: RunConfiguration,
        now_ms: int,
    ) -> BuiltPayload:
        return build_flat_payload(record, validation, config, now_ms)

    def to_request(self, units: Sequence[DispatchUnit]) -> RequestSpec:
        if len(units) != 1:
            raise ValueError("webhook channel sends exactly one unit per call")
        return RequestSpec.post(
            self.url,
            json=dict(units[0].payload),
            headers=dict(JSON_HEADERS),
            timeout_seconds=self.timeout_seconds,
        )

    def resolve_outcomes(
        self,
        units: Sequence[DispatchUnit],
        result: ExecutionResult,
        *,
        attempt: int,
        call_label: str,
    ) -> list[DispatchOutcome]:
        unit = units[0]
        if is_success_status(result.status_code):
            return [
                DispatchOutcome.sent(
                    unit,
                    result.status_code,
                    extract_response_id(result.response_json),
                    attempt=attempt,
                    call_label=call_label,
                )
            ]
        return [
            DispatchOutcome.failed(
                unit,
                result.status_code,
                call_failure_message(result),
                error_code=result.error_code or ErrorCode.from_status(result.status_code).value,
                attempt=attempt,
                call_label=call_label,
            )
        ]
