from __future__ import annotations

from typing import Protocol, Sequence

from event_replay.domain.dispatch.models import DeliveryMode, DispatchOutcome, DispatchUnit
from event_replay.domain.models import RawRecord, ValidationResult
from event_replay.domain.payload.models import BuiltPayload
from event_replay.domain.ports.execution import ExecutionResult, RequestSpec
from event_replay.domain.run_config import ChannelKind, RunConfiguration


class ChannelSpec(Protocol):
    """
    Назначение/ответственность:
        Стратегия канала доставки поверх общего ядра (валидатор, диспетчер, агрегатор).
        Канал отвечает только за форму payload, HTTP-запрос и разбор ответа.

    Контракт:
        - build_payload вызывается только для принятых валидатором записей.
        - to_request получает непустую группу unit одного вызова (для SINGLE ровно один).
        - resolve_outcomes возвращает ровно один исход на каждый unit группы, в том же порядке.
    """

    kind: ChannelKind
    mode: DeliveryMode

    def build_payload(
        self,
        record: RawRecord,
        validation: ValidationResult,
        config: RunConfiguration,
        now_ms: int,
    ) -> BuiltPayload: ...

    def to_request(self, units: Sequence[DispatchUnit]) -> RequestSpec: ...

    def resolve_outcomes(
        self,
        units: Sequence[DispatchUnit],
        result: ExecutionResult,
        *,
        attempt: int,
        call_label: str,
    ) -> list[DispatchOutcome]: ...
