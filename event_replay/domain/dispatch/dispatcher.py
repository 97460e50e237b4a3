from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Callable, Sequence

from event_replay.common.time import getUtcNowIso
from event_replay.domain.dispatch.context import RunContext
from event_replay.domain.dispatch.models import (
    CANCELLED_CODE,
    CANCELLED_REASON,
    NETWORK_ERROR_KEY,
    DeliveryMode,
    DispatchOutcome,
    DispatchUnit,
    OutcomeStatus,
)
from event_replay.domain.ports.execution import RequestExecutorProtocol
from event_replay.domain.reporting.aggregator import AggregateSnapshot

if TYPE_CHECKING:
    from event_replay.channels.base import ChannelSpec

CallListener = Callable[[str, AggregateSnapshot], None]


def chunk_units(units: Sequence[DispatchUnit], size: int) -> list[list[DispatchUnit]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [list(units[i : i + size]) for i in range(0, len(units), size)]


class Dispatcher:
    """
    Назначение/ответственность:
        Доставляет unit в канал с ограничением частоты вызовов и одним проходом повтора.

    Ограничения/гарантии:
        - Один вызов в полёте; исход каждого вызова сворачивается в RunContext до следующего.
        - Первый проход идёт в порядке входа, повтор в порядке возникновения ошибок.
        - Повтор выполняется ровно один раз; оставшиеся ошибки терминальны.
        - Остановка кооперативная: проверяется перед каждым вызовом, текущий вызов не прерывается.
        - Пауза SINGLE: ровно 60/rate секунд между вызовами, после последнего не ждём.
        - Пауза BATCHED: 60/rate минус длительность предыдущего вызова, не меньше нуля.
        - meta["sentAt"] каждого исхода: UTC-время завершения его вызова.
    """

    def __init__(
        self,
        channel: "ChannelSpec",
        executor: RequestExecutorProtocol,
        *,
        rate_per_minute: int,
        batch_size: int = 1,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now_iso: Callable[[], str] = getUtcNowIso,
        logger: logging.Logger | None = None,
        on_call: CallListener | None = None,
    ) -> None:
        if rate_per_minute < 1:
            raise ValueError("rate_per_minute must be >= 1")
        self.channel = channel
        self.executor = executor
        self.mode = channel.mode
        self.rate_per_minute = rate_per_minute
        self.batch_size = 1 if self.mode == DeliveryMode.SINGLE else batch_size
        self._sleep = sleep
        self._clock = clock
        self._now_iso = now_iso
        self._logger = logger or logging.getLogger("eventReplay.dispatch")
        self._on_call = on_call
        self._calls_issued = 0
        self._last_duration = 0.0

    @property
    def interval_seconds(self) -> float:
        return 60.0 / self.rate_per_minute

    def run(self, units: Sequence[DispatchUnit], context: RunContext) -> list[DispatchOutcome]:
        """
        Контракт:
            Вход: unit в порядке входа и контекст запуска.
            Выход: все исходы запуска (первый проход, отмена, повтор) в порядке появления.
        Алгоритм:
            1) Первый проход по группам из batch_size unit.
            2) Не выпущенные из-за остановки unit фиксируются как SKIPPED (CANCELLED).
            3) Ошибочные unit первого прохода отправляются повторно один раз.
        """
        groups = chunk_units(units, self.batch_size)
        self._log(context, logging.INFO, f"dispatch start: units={len(units)} calls={len(groups)} mode={self.mode.value}")

        failed_units = self._run_pass(groups, context, attempt=1)

        if failed_units and not context.stop_requested:
            retry_groups = chunk_units(failed_units, self.batch_size)
            self._log(context, logging.INFO, f"retry pass: units={len(failed_units)} calls={len(retry_groups)}")
            self._run_pass(retry_groups, context, attempt=2)

        snapshot = context.aggregator.snapshot()
        self._log(
            context,
            logging.INFO,
            f"dispatch done: sent={snapshot.sent} failed={snapshot.failed} skipped={snapshot.skipped} "
            f"calls={snapshot.calls_total} cancelled={context.stop_requested}",
        )
        return list(context.outcomes)

    def _run_pass(self, groups: list[list[DispatchUnit]], context: RunContext, attempt: int) -> list[DispatchUnit]:
        failed: list[DispatchUnit] = []
        label_prefix = "call" if attempt == 1 else "retry"
        for position, group in enumerate(groups):
            if not self._before_call(context):
                if attempt == 1:
                    self._cancel_remaining(groups[position:], context)
                else:
                    self._log(context, logging.WARNING, "retry pass stopped; remaining units stay failed")
                break
            label = f"{label_prefix} {position + 1}"
            outcomes = self._issue(group, context, attempt, label)
            failed.extend(o.unit for o in outcomes if o.status == OutcomeStatus.FAILED and o.unit is not None)
        return failed

    def _before_call(self, context: RunContext) -> bool:
        """Пауза перед вызовом (кроме самого первого). False, если запрошена остановка."""
        if context.stop_requested:
            return False
        if self._calls_issued > 0:
            self._wait()
            if context.stop_requested:
                return False
        return True

    def _wait(self) -> None:
        if self.mode == DeliveryMode.SINGLE:
            delay = self.interval_seconds
        else:
            delay = max(0.0, self.interval_seconds - self._last_duration)
        if delay > 0:
            self._sleep(delay)

    def _issue(self, group: list[DispatchUnit], context: RunContext, attempt: int, label: str) -> list[DispatchOutcome]:
        request = self.channel.to_request(group)
        started = self._clock()
        result = self.executor.execute(request)
        self._last_duration = max(0.0, self._clock() - started)
        completed_at = self._now_iso()
        self._calls_issued += 1

        status_key = str(result.status_code) if result.status_code is not None else NETWORK_ERROR_KEY
        context.record_call(status_key)

        outcomes = self.channel.resolve_outcomes(group, result, attempt=attempt, call_label=label)
        if len(outcomes) != len(group):
            raise RuntimeError(f"channel returned {len(outcomes)} outcomes for {len(group)} units")
        outcomes = [replace(o, meta={**o.meta, "sentAt": completed_at}) for o in outcomes]
        for outcome in outcomes:
            context.record(outcome)

        sent = sum(1 for o in outcomes if o.status == OutcomeStatus.SENT)
        level = logging.INFO if sent == len(outcomes) else logging.WARNING
        message = (
            f"{label}: units={len(group)} status={status_key} sent={sent} failed={len(outcomes) - sent} "
            f"durationMs={int(self._last_duration * 1000)}"
        )
        if result.error_message and sent < len(outcomes):
            message += f" error={result.error_message}"
        self._log(context, level, message)

        if self._on_call is not None:
            self._on_call(label, context.aggregator.snapshot())
        return outcomes

    def _cancel_remaining(self, groups: list[list[DispatchUnit]], context: RunContext) -> None:
        count = 0
        for group in groups:
            for unit in group:
                context.record(
                    DispatchOutcome.skipped(unit.record_index, CANCELLED_REASON, unit=unit, code=CANCELLED_CODE)
                )
                count += 1
        self._log(context, logging.WARNING, f"run cancelled: {count} units not dispatched")

    def _log(self, context: RunContext, level: int, message: str) -> None:
        self._logger.log(level, message, extra={"runId": context.run_id, "component": "dispatch"})
