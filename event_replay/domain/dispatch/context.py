from __future__ import annotations

from typing import Callable, Iterable

from event_replay.domain.dispatch.models import DispatchOutcome, OutcomeStatus
from event_replay.domain.reporting.aggregator import OutcomeAggregator

OutcomeListener = Callable[[DispatchOutcome], None]


class RunContext:
    """
    Назначение/ответственность:
        Состояние одного запуска, передаваемое в цикл отправки явно:
        агрегатор, журнал исходов и флаг остановки.

    Инварианты:
        - Каждый исход сразу сворачивается в агрегатор.
        - Флаг остановки только взводится; сбросить его нельзя.
    """

    def __init__(
        self,
        run_id: str,
        total_records: int,
        listeners: Iterable[OutcomeListener] = (),
    ) -> None:
        self.run_id = run_id
        self.aggregator = OutcomeAggregator(total_records)
        self.outcomes: list[DispatchOutcome] = []
        self._listeners = list(listeners)
        self._stop_requested = False

    def request_stop(self) -> None:
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def record(self, outcome: DispatchOutcome) -> None:
        self.outcomes.append(outcome)
        self.aggregator.fold(outcome)
        for listener in self._listeners:
            listener(outcome)

    def record_call(self, status_key: str) -> None:
        self.aggregator.count_call(status_key)

    def final_outcomes(self) -> dict[int, DispatchOutcome]:
        """Последний исход на каждую запись (record_index -> outcome)."""
        latest: dict[int, DispatchOutcome] = {}
        for outcome in self.outcomes:
            latest[outcome.record_index] = outcome
        return latest

    def final_failed(self) -> list[DispatchOutcome]:
        return [o for o in self.final_outcomes().values() if o.status == OutcomeStatus.FAILED]
