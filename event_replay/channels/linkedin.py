from __future__ import annotations

from typing import Any, Sequence

from event_replay.channels.webhook import call_failure_message, is_success_status
from event_replay.domain.dispatch.models import DeliveryMode, DispatchOutcome, DispatchUnit
from event_replay.domain.error_codes import ErrorCode
from event_replay.domain.models import RawRecord, ValidationResult
from event_replay.domain.payload.capi import build_capi_event
from event_replay.domain.payload.models import BuiltPayload
from event_replay.domain.ports.execution import ExecutionResult, RequestSpec
from event_replay.domain.run_config import ChannelKind, RunConfiguration

DEFAULT_LINKEDIN_URL = "https://api.linkedin.com/rest/conversionEvents"
DEFAULT_API_VERSION = "202508"
RESTLI_PROTOCOL_VERSION = "2.0.0"
NO_ELEMENTS_MESSAGE = "response has no per-element statuses"
MISSING_ELEMENT_MESSAGE = "no status returned for this element"


def linkedin_headers(access_token: str, api_version: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
        "LinkedIn-Version": api_version,
        "X-Restli-Protocol-Version": RESTLI_PROTOCOL_VERSION,
        "X-RestLi-Method": "BATCH_CREATE",
    }


def _element_error_message(element: dict[str, Any]) -> str:
    error = element.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    return "Unknown error"


def _element_status(element: dict[str, Any]) -> int | None:
    status = element.get("status")
    if isinstance(status, bool):
        return None
    if isinstance(status, int):
        return status
    if isinstance(status, str) and status.strip().isdigit():
        return int(status.strip())
    return None


class LinkedInCapiChannel:
    """
    Назначение/ответственность:
        Канал LinkedIn Conversions API: пакет {elements: [...]} до batch_size событий на вызов.

    Разбор ответа:
        - Есть список elements: i-й элемент относится к i-му unit; 2xx -> SENT (id как response_id),
          иначе FAILED с error.message. Unit без элемента -> FAILED (MISSING_ELEMENT_STATUS).
        - Нет списка elements: все unit вызова FAILED с одной ошибкой вызова.
    """

    kind = ChannelKind.LINKEDIN
    mode = DeliveryMode.BATCHED

    def __init__(
        self,
        access_token: str,
        *,
        url: str = DEFAULT_LINKEDIN_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout_seconds: float = 30.0,
    ):
        self.access_token = access_token
        self.url = url
        self.api_version = api_version
        self.timeout_seconds = timeout_seconds

    def headers(self) -> dict[str, str]:
        return linkedin_headers(self.access_token, self.api_version)

    def build_payload(
        self,
        record: RawRecord,
        validation: ValidationResult,
        config: RunConfiguration,
        now_ms: int,
    ) -> BuiltPayload:
        return build_capi_event(record, validation, config, now_ms)

    def to_request(self, units: Sequence[DispatchUnit]) -> RequestSpec:
        if not units:
            raise ValueError("batch must contain at least one unit")
        return RequestSpec.post(
            self.url,
            json={"elements": [dict(unit.payload) for unit in units]},
            headers=self.headers(),
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
        elements = None
        if isinstance(result.response_json, dict):
            candidate = result.response_json.get("elements")
            if isinstance(candidate, list):
                elements = candidate

        if elements is None:
            return self._fail_whole_call(units, result, attempt=attempt, call_label=call_label)

        outcomes: list[DispatchOutcome] = []
        for position, unit in enumerate(units):
            element = elements[position] if position < len(elements) else None
            if not isinstance(element, dict):
                outcomes.append(
                    DispatchOutcome.failed(
                        unit,
                        result.status_code,
                        MISSING_ELEMENT_MESSAGE,
                        error_code=ErrorCode.MISSING_ELEMENT_STATUS.value,
                        attempt=attempt,
                        call_label=call_label,
                    )
                )
                continue
            status = _element_status(element)
            if is_success_status(status):
                element_id = element.get("id")
                meta = {"location": element["location"]} if element.get("location") else {}
                outcomes.append(
                    DispatchOutcome.sent(
                        unit,
                        status,
                        str(element_id) if element_id is not None else None,
                        attempt=attempt,
                        call_label=call_label,
                        meta=meta,
                    )
                )
            else:
                outcomes.append(
                    DispatchOutcome.failed(
                        unit,
                        status,
                        _element_error_message(element),
                        error_code=ErrorCode.ELEMENT_FAILED.value,
                        attempt=attempt,
                        call_label=call_label,
                    )
                )
        return outcomes

    def _fail_whole_call(
        self,
        units: Sequence[DispatchUnit],
        result: ExecutionResult,
        *,
        attempt: int,
        call_label: str,
    ) -> list[DispatchOutcome]:
        if is_success_status(result.status_code):
            message = NO_ELEMENTS_MESSAGE
            error_code = ErrorCode.MISSING_ELEMENT_STATUS.value
        else:
            message = call_failure_message(result)
            if isinstance(result.response_json, dict) and result.response_json.get("message"):
                message = str(result.response_json["message"])
            error_code = result.error_code or ErrorCode.from_status(result.status_code).value
        return [
            DispatchOutcome.failed(
                unit,
                result.status_code,
                message,
                error_code=error_code,
                attempt=attempt,
                call_label=call_label,
            )
            for unit in units
        ]
