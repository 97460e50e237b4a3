from __future__ import annotations

from dataclasses import dataclass, field

from event_replay.domain.dispatch.models import CANCELLED_CODE, DispatchOutcome, OutcomeStatus


def percent(count: int, base: int) -> float:
    """count/base*100, 0.0 при пустой базе."""
    if base <= 0:
        return 0.0
    return count * 100.0 / base


def formatPct(value: float) -> str:
    return f"{value:.1f}%"


@dataclass(frozen=True)
class FailureGroup:
    key: str
    count: int
    share_pct: float
    record_indexes: tuple[int, ...]


@dataclass(frozen=True)
class AggregateSnapshot:
    """
    Назначение:
        Неизменяемый срез счётчиков для прогресса и итоговой сводки.
    """

    total_records: int
    sent: int
    failed: int
    skipped: int
    cancelled: int
    retried: int
    calls_total: int
    status_codes: dict[str, int] = field(default_factory=dict)
    failure_groups: tuple[FailureGroup, ...] = ()

    @property
    def processed(self) -> int:
        return self.sent + self.failed + self.skipped

    @property
    def delivered_attempted(self) -> int:
        return self.sent + self.failed

    @property
    def success_rate_pct(self) -> float:
        return percent(self.sent, self.sent + self.failed)

    @property
    def progress_pct(self) -> float:
        return percent(self.processed, self.total_records)

    def as_dict(self) -> dict:
        return {
            "total_records": self.total_records,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "retried": self.retried,
            "calls_total": self.calls_total,
            "progress_pct": round(self.progress_pct, 1),
            "success_rate_pct": round(self.success_rate_pct, 1),
            "status_codes": dict(self.status_codes),
            "failure_groups": [
                {"key": g.key, "count": g.count, "share_pct": round(g.share_pct, 1)} for g in self.failure_groups
            ],
        }


class OutcomeAggregator:
    """
    Назначение/ответственность:
        Копит счётчики исходов запуска.

    Инварианты:
        - На запись учитывается только последний исход: повтор, завершившийся SENT,
          переводит запись из failed в sent.
        - В конце запуска sent + failed + skipped == total_records.
    """

    def __init__(self, total_records: int) -> None:
        self.total_records = total_records
        self.sent = 0
        self.failed = 0
        self.skipped = 0
        self.cancelled = 0
        self.retried = 0
        self.calls_total = 0
        self.status_codes: dict[str, int] = {}
        self._latest: dict[int, DispatchOutcome] = {}

    def fold(self, outcome: DispatchOutcome) -> None:
        previous = self._latest.get(outcome.record_index)
        if previous is not None:
            self._adjust(previous, -1)
            self.retried += 1
        self._latest[outcome.record_index] = outcome
        self._adjust(outcome, +1)

    def count_call(self, status_key: str) -> None:
        """Один HTTP-вызов -> +1 в гистограмме статусов (HTTP-код или NETWORK_ERROR)."""
        self.calls_total += 1
        self.status_codes[status_key] = self.status_codes.get(status_key, 0) + 1

    def failed_outcomes(self) -> list[DispatchOutcome]:
        return [o for o in self._latest.values() if o.status == OutcomeStatus.FAILED]

    def sent_outcomes(self) -> list[DispatchOutcome]:
        return sorted(
            (o for o in self._latest.values() if o.status == OutcomeStatus.SENT),
            key=lambda o: o.record_index,
        )

    def snapshot(self) -> AggregateSnapshot:
        return AggregateSnapshot(
            total_records=self.total_records,
            sent=self.sent,
            failed=self.failed,
            skipped=self.skipped,
            cancelled=self.cancelled,
            retried=self.retried,
            calls_total=self.calls_total,
            status_codes=dict(sorted(self.status_codes.items(), key=lambda kv: (-kv[1], kv[0]))),
            failure_groups=self._failure_groups(),
        )

    def _adjust(self, outcome: DispatchOutcome, delta: int) -> None:
        if outcome.status == OutcomeStatus.SENT:
            self.sent += delta
        elif outcome.status == OutcomeStatus.FAILED:
            self.failed += delta
        else:
            self.skipped += delta
            if outcome.error_code == CANCELLED_CODE:
                self.cancelled += delta

    def _failure_groups(self) -> tuple[FailureGroup, ...]:
        groups: dict[str, list[int]] = {}
        for outcome in self.failed_outcomes():
            key = f"{outcome.status_key}: {outcome.message or 'Unknown error'}"
            groups.setdefault(key, []).append(outcome.record_index)
        total_failed = sum(len(v) for v in groups.values())
        ordered = sorted(groups.items(), key=lambda kv: (-len(kv[1]), kv[0]))
        return tuple(
            FailureGroup(
                key=key,
                count=len(indexes),
                share_pct=percent(len(indexes), total_failed),
                record_indexes=tuple(sorted(indexes)),
            )
            for key, indexes in ordered
        )
