from __future__ import annotations

from event_replay.domain.dispatch.models import CANCELLED_CODE, DispatchOutcome, DispatchUnit
from event_replay.domain.reporting.aggregator import OutcomeAggregator, formatPct, percent


def unit(index: int) -> DispatchUnit:
    return DispatchUnit(record_index=index, line_no=index + 2, batch_index=1, email="a@x.com", payload={})


def test_counts_partition_records():
    agg = OutcomeAggregator(total_records=4)

    agg.fold(DispatchOutcome.sent(unit(0), 201))
    agg.fold(DispatchOutcome.failed(unit(1), 400, "Invalid email"))
    agg.fold(DispatchOutcome.skipped(2, "missing required email field"))
    agg.fold(DispatchOutcome.skipped(3, "run cancelled before dispatch", code=CANCELLED_CODE))

    snap = agg.snapshot()
    assert (snap.sent, snap.failed, snap.skipped, snap.cancelled) == (1, 1, 2, 1)
    assert snap.processed == snap.total_records
    assert snap.progress_pct == 100.0
    assert snap.success_rate_pct == 50.0


def test_latest_outcome_replaces_previous():
    agg = OutcomeAggregator(total_records=1)

    agg.fold(DispatchOutcome.failed(unit(0), 500, "HTTP 500"))
    agg.fold(DispatchOutcome.sent(unit(0), 201, attempt=2))

    snap = agg.snapshot()
    assert (snap.sent, snap.failed) == (1, 0)
    assert snap.retried == 1
    assert snap.failure_groups == ()
    assert [o.record_index for o in agg.sent_outcomes()] == [0]


def test_status_histogram_is_ordered_by_count():
    agg = OutcomeAggregator(total_records=0)
    for key in ["500", "201", "201", "429", "201", "429"]:
        agg.count_call(key)

    snap = agg.snapshot()
    assert list(snap.status_codes.items()) == [("201", 3), ("429", 2), ("500", 1)]
    assert snap.calls_total == 6


def test_failure_groups_by_status_and_message():
    agg = OutcomeAggregator(total_records=4)
    agg.fold(DispatchOutcome.failed(unit(0), 400, "Invalid email"))
    agg.fold(DispatchOutcome.failed(unit(1), None, "Network error"))
    agg.fold(DispatchOutcome.failed(unit(2), 400, "Invalid email"))
    agg.fold(DispatchOutcome.failed(unit(3), 400, ""))

    groups = agg.snapshot().failure_groups

    assert [(g.key, g.count) for g in groups] == [
        ("400: Invalid email", 2),
        ("400: Unknown error", 1),
        ("NETWORK_ERROR: Network error", 1),
    ]
    assert groups[0].record_indexes == (0, 2)
    assert groups[0].share_pct == 50.0


def test_empty_run_has_zero_rates():
    snap = OutcomeAggregator(total_records=0).snapshot()

    assert snap.success_rate_pct == 0.0
    assert snap.progress_pct == 0.0
    assert percent(1, 0) == 0.0
    assert formatPct(33.333) == "33.3%"


def test_snapshot_as_dict_rounds_percentages():
    agg = OutcomeAggregator(total_records=3)
    agg.fold(DispatchOutcome.sent(unit(0), 201))

    data = agg.snapshot().as_dict()

    assert data["progress_pct"] == 33.3
    assert data["success_rate_pct"] == 100.0
    assert data["sent"] == 1
