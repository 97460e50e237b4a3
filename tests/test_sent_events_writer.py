from __future__ import annotations

import json

from event_replay.domain.dispatch.models import DispatchOutcome, DispatchUnit
from event_replay.infra.artifacts.sent_events_writer import buildSentEventRows, writeSentEventsJson


def make_unit(index: int, batch_index: int) -> DispatchUnit:
    email = f"user{index}@x.com"
    return DispatchUnit(
        record_index=index,
        line_no=index + 2,
        batch_index=batch_index,
        email=email,
        payload={"email": email},
        source={"email": email, "source": "crm"},
    )


def test_rows_use_send_time_of_each_call():
    outcomes = [
        DispatchOutcome.sent(make_unit(0, 1), 201, "a", call_label="call 1", meta={"sentAt": "2024-05-01T10:00:00+00:00"}),
        DispatchOutcome.sent(
            make_unit(1, 1), 201, "b", attempt=2, call_label="retry 1", meta={"sentAt": "2024-05-01T10:05:00+00:00"}
        ),
    ]

    rows = buildSentEventRows(outcomes, sentAt="2024-05-01T11:00:00+00:00")

    assert [row["sentAt"] for row in rows] == ["2024-05-01T10:00:00+00:00", "2024-05-01T10:05:00+00:00"]
    assert rows[1]["attempt"] == 2
    assert rows[0]["email"] == "user0@x.com"
    assert rows[0]["source"] == "crm"


def test_rows_fall_back_to_given_time_without_call_stamp():
    rows = buildSentEventRows([DispatchOutcome.sent(make_unit(0, 1), 201)], sentAt="2024-05-01T11:00:00+00:00")

    assert rows[0]["sentAt"] == "2024-05-01T11:00:00+00:00"


def test_failed_and_skipped_outcomes_are_not_exported(tmp_path):
    unit = make_unit(0, 1)
    outcomes = [DispatchOutcome.failed(unit, 500, "HTTP 500"), DispatchOutcome.skipped(1, "missing required email field")]

    assert buildSentEventRows(outcomes) == []
    assert writeSentEventsJson(outcomes, str(tmp_path), "webhook", "run-1") is None


def test_written_file_keeps_per_call_send_time(tmp_path):
    outcome = DispatchOutcome.sent(make_unit(0, 1), 201, "a", meta={"sentAt": "2024-05-01T10:00:00+00:00"})

    path = writeSentEventsJson([outcome], str(tmp_path), "linkedin", "run-1")

    assert path is not None
    assert path.endswith("sent-events-linkedin-run-1.json")
    with open(path, encoding="utf-8") as f:
        rows = json.load(f)
    assert rows[0]["sentAt"] == "2024-05-01T10:00:00+00:00"
    assert rows[0]["responseId"] == "a"
