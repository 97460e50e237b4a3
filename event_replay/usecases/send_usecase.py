from __future__ import annotations

import logging
import time
from typing import Callable

from event_replay.channels.base import ChannelSpec
from event_replay.domain.dispatch.context import RunContext
from event_replay.domain.dispatch.dispatcher import CallListener, Dispatcher
from event_replay.domain.dispatch.models import DispatchOutcome, OutcomeStatus
from event_replay.domain.models import DiagnosticItem, DiagnosticStage
from event_replay.domain.ports.execution import RequestExecutorProtocol
from event_replay.infra.logging.setup import logEvent
from event_replay.usecases.prepare_usecase import PreparedRun

REJECTED_CODE = "VALIDATION_REJECTED"


class SendUseCase:
    """
    Назначение/ответственность:
        Отправка подготовленного запуска: отклонённые записи сворачиваются как SKIPPED,
        принятые уходят через Dispatcher, итог переносится в отчёт.
    """

    def __init__(
        self,
        executor: RequestExecutorProtocol,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_call: CallListener | None = None,
    ) -> None:
        self.executor = executor
        self.sleep = sleep
        self.clock = clock
        self.on_call = on_call

    def run(
        self,
        prepared: PreparedRun,
        channel: ChannelSpec,
        logger: logging.Logger,
        run_id: str,
        report,
        context: RunContext | None = None,
    ) -> tuple[int, RunContext]:
        """
        Контракт:
            Выход: (exit code, контекст запуска). 0: все записи отправлены,
            1: есть FAILED или SKIPPED.
        """
        context = context or RunContext(run_id, prepared.total_records)

        for record, validation in prepared.rejected:
            context.record(DispatchOutcome.skipped(record.index, "; ".join(validation.reasons), code=REJECTED_CODE))

        dispatcher = Dispatcher(
            channel,
            self.executor,
            rate_per_minute=prepared.config.rate_per_minute,
            batch_size=prepared.config.batch_size,
            sleep=self.sleep,
            clock=self.clock,
            logger=logger,
            on_call=self.on_call,
        )
        dispatcher.run(prepared.units, context)

        snapshot = context.aggregator.snapshot()
        if snapshot.processed != snapshot.total_records:
            logEvent(
                logger,
                logging.ERROR,
                run_id,
                "send",
                f"outcome count mismatch: processed={snapshot.processed} total={snapshot.total_records}",
            )

        report.apply_snapshot(snapshot)
        report.summary.records_valid = len(prepared.units)
        self._fill_report(prepared, context, report)

        return (0 if snapshot.failed == 0 and snapshot.skipped == 0 else 1), context

    def _fill_report(self, prepared: PreparedRun, context: RunContext, report) -> None:
        validations = {v.record_index: v for v in prepared.validations}
        records = {r.index: r for r in prepared.records}
        final = context.final_outcomes()

        for index in sorted(final):
            outcome = final[index]
            validation = validations.get(index)
            warnings = list(validation.warning_items) if validation else []
            warnings.extend(prepared.build_warnings.get(index, []))
            errors: list[DiagnosticItem] = []
            if outcome.status == OutcomeStatus.SKIPPED and validation is not None and validation.rejected:
                errors.extend(validation.error_items)
            elif outcome.status != OutcomeStatus.SENT:
                errors.append(
                    DiagnosticItem(
                        DiagnosticStage.DISPATCH,
                        outcome.error_code or outcome.status.value,
                        None,
                        outcome.message or "",
                    )
                )
            report.count_diagnostics(errors, warnings)
            if outcome.status == OutcomeStatus.SENT:
                continue
            record = records.get(index)
            report.add_item(
                status=outcome.status.value,
                record_index=index,
                line_no=record.line_no if record else None,
                errors=errors,
                warnings=warnings,
                meta={
                    "status_code": outcome.status_code,
                    "attempt": outcome.attempt,
                    "call": outcome.call_label,
                },
            )
