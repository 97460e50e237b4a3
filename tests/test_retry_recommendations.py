from __future__ import annotations

import pytest

from event_replay.domain.reporting.aggregator import AggregateSnapshot, FailureGroup
from event_replay.domain.reporting.diagnostics import retry_recommendations, status_text

RATE_TIPS = ["Reduce the calls-per-minute rate (currently 20)", "Increase the delay between calls"]
NETWORK_TIPS = ["Check internet connection", "Retry during off-peak hours"]


def snapshot_with(*keys: str) -> AggregateSnapshot:
    return AggregateSnapshot(
        total_records=len(keys),
        sent=0,
        failed=len(keys),
        skipped=0,
        cancelled=0,
        retried=0,
        calls_total=len(keys),
        failure_groups=tuple(FailureGroup(key, 1, 100.0, (i,)) for i, key in enumerate(keys)),
    )


@pytest.mark.parametrize(
    "keys, expected",
    [
        (("429: Too many requests",), RATE_TIPS),
        (("NETWORK_ERROR: Request timed out: read",), RATE_TIPS + NETWORK_TIPS),
        (
            ("400: Invalid email",),
            ["Check data format and required fields", "Validate conversion tracking parameters"],
        ),
        (("401: Unauthorized",), ["Check the access token and its scopes"]),
        (("403: Not enough permissions",), ["Check the access token and its scopes"]),
        (("NETWORK_ERROR: Network error: connection refused",), NETWORK_TIPS),
        (("503: HTTP 503",), ["Remote server error: retry the failed records later"]),
        (("404: Not found",), []),
        ((), []),
    ],
)
def test_retry_recommendations_by_failure_group(keys, expected):
    assert retry_recommendations(snapshot_with(*keys), rate_per_minute=20) == expected


def test_rate_tip_without_known_rate():
    tips = retry_recommendations(snapshot_with("429: Too many requests"))

    assert tips[0] == "Reduce the calls-per-minute rate"


def test_tips_from_several_groups_follow_rule_order():
    tips = retry_recommendations(snapshot_with("500: boom", "400: Invalid email", "401: Unauthorized"), rate_per_minute=20)

    assert tips == [
        "Check data format and required fields",
        "Validate conversion tracking parameters",
        "Check the access token and its scopes",
        "Remote server error: retry the failed records later",
    ]


@pytest.mark.parametrize(
    "key, expected",
    [
        ("201", "Created"),
        (429, "Too Many Requests"),
        ("207", "Multi-Status (Batch Response)"),
        ("NETWORK_ERROR", "Network/Connection Error"),
        ("418", "Unknown"),
    ],
)
def test_status_text(key, expected):
    assert status_text(key) == expected
