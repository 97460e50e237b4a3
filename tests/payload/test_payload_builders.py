from __future__ import annotations

import hashlib

import pytest

from event_replay.domain.models import RawRecord
from event_replay.domain.payload.capi import build_capi_event, hash_email
from event_replay.domain.payload.flat import build_flat_payload
from event_replay.domain.run_config import ChannelKind, RunConfiguration
from event_replay.domain.timestamps import DAY_MS, TimeSource
from event_replay.domain.validation.validator import RecordValidator

NOW = 1_700_000_000_000


def webhook_config(**overrides) -> RunConfiguration:
    values = dict(channel=ChannelKind.WEBHOOK, endpoint_url="https://hooks.example.com/r", rate_per_minute=20)
    values.update(overrides)
    return RunConfiguration(**values)


def linkedin_config(**overrides) -> RunConfiguration:
    values = dict(
        channel=ChannelKind.LINKEDIN,
        endpoint_url="https://api.linkedin.com/rest/conversionEvents",
        rate_per_minute=60,
        batch_size=100,
        conversion_id="12345",
    )
    values.update(overrides)
    return RunConfiguration(**values)


def build(builder, values: dict[str, str], config: RunConfiguration):
    record = RawRecord(index=0, line_no=2, values=values)
    validation = RecordValidator().validate(record, 0, config, now_ms=NOW)
    return builder(record, validation, config, NOW)


def test_flat_payload_keeps_non_empty_fields():
    built = build(
        build_flat_payload,
        {"email": "a@x.com", "firstName": "Ann", "lastName": "Lee", "phone": "", "source": "crm"},
        webhook_config(),
    )

    assert built.body == {"email": "a@x.com", "firstName": "Ann", "lastName": "Lee", "source": "crm"}
    assert built.time_source is None


def test_flat_payload_drops_user_info_group():
    built = build(
        build_flat_payload,
        {"email": "a@x.com", "firstName": "Ann", "title": "CTO", "source": "crm"},
        webhook_config(),
    )

    assert built.body == {"email": "a@x.com", "source": "crm"}


def test_flat_payload_drops_lone_first_name():
    built = build(build_flat_payload, {"email": "a@x.com", "firstName": "Ann"}, webhook_config())

    assert built.body == {"email": "a@x.com"}


def test_flat_payload_normalizes_currency():
    built = build(
        build_flat_payload,
        {"email": "a@x.com", "currencyCode": "usd", "conversionValue": "10"},
        webhook_config(),
    )

    assert built.body == {"email": "a@x.com", "currencyCode": "USD", "conversionValue": "10"}


def test_flat_payload_drops_invalid_currency_pair():
    built = build(
        build_flat_payload,
        {"email": "a@x.com", "currencyCode": "EURO", "conversionValue": "5"},
        webhook_config(),
    )

    assert built.body == {"email": "a@x.com"}


def test_flat_payload_passes_conversion_time_through_when_disabled():
    built = build(
        build_flat_payload,
        {"email": "a@x.com", "conversionTime": "1600000000000"},
        webhook_config(),
    )

    assert built.body["conversionTime"] == "1600000000000"


def test_flat_payload_resets_old_conversion_time():
    old = str(NOW - 120 * DAY_MS)
    built = build(
        build_flat_payload,
        {"email": "a@x.com", "conversionTime": old},
        webhook_config(use_conversion_time=True, reset_old_timestamps=True),
    )

    assert built.body["conversionTime"] == str(NOW)
    assert built.time_source == TimeSource.RESET
    assert built.notes


def test_reset_note_describes_future_timestamp():
    ahead = str(NOW + 2 * DAY_MS)
    built = build(
        build_capi_event,
        {"email": "a@x.com", "conversionTime": ahead},
        linkedin_config(use_conversion_time=True, reset_old_timestamps=True),
    )

    assert built.body["conversionHappenedAt"] == NOW
    assert "(2 days in the future) to current time" in built.notes[0]


def test_flat_payload_keeps_recent_conversion_time():
    recent = str(NOW - DAY_MS)
    built = build(
        build_flat_payload,
        {"email": "a@x.com", "conversionTime": recent},
        webhook_config(use_conversion_time=True),
    )

    assert built.body["conversionTime"] == recent
    assert built.time_source == TimeSource.RECORD


def test_capi_event_structure():
    built = build(
        build_capi_event,
        {
            "email": "  John@Example.com ",
            "firstName": "John",
            "lastName": "Doe",
            "companyName": "Acme",
            "currencyCode": "usd",
            "conversionValue": "10.50",
        },
        linkedin_config(),
    )

    expected_hash = hashlib.sha256(b"john@example.com").hexdigest()
    assert built.body == {
        "conversion": "urn:lla:llaPartnerConversion:12345",
        "conversionHappenedAt": NOW,
        "conversionValue": {"currencyCode": "USD", "amount": "10.5"},
        "user": {
            "userIds": [{"idType": "SHA256_EMAIL", "idValue": expected_hash}],
            "userInfo": {"firstName": "John", "lastName": "Doe", "companyName": "Acme"},
        },
    }


def test_capi_event_without_user_info_and_currency():
    built = build(
        build_capi_event,
        {"email": "a@x.com", "title": "CTO", "currencyCode": "USD"},
        linkedin_config(),
    )

    assert "conversionValue" not in built.body
    assert "userInfo" not in built.body["user"]
    assert built.body["user"]["userIds"][0]["idValue"] == hash_email("A@X.COM")


def test_capi_event_uses_record_time_inside_window():
    recent = NOW - 3 * DAY_MS
    built = build(
        build_capi_event,
        {"email": "a@x.com", "conversionTime": str(recent)},
        linkedin_config(use_conversion_time=True),
    )

    assert built.body["conversionHappenedAt"] == recent


def test_rejected_record_cannot_be_built():
    with pytest.raises(ValueError):
        build(build_capi_event, {"email": ""}, linkedin_config())


def test_capi_event_requires_conversion_id():
    with pytest.raises(ValueError):
        build(build_capi_event, {"email": "a@x.com"}, linkedin_config(conversion_id=None))


@pytest.mark.parametrize(
    "values, expected_user_info",
    [
        ({"email": "a@x.com", "firstName": "Ann", "lastName": ""}, None),
        ({"email": "a@x.com", "lastName": "Lee"}, None),
        ({"email": "a@x.com", "firstName": "Ann", "lastName": "Lee"}, {"firstName": "Ann", "lastName": "Lee"}),
    ],
)
def test_capi_user_info_requires_both_names(values, expected_user_info):
    built = build(build_capi_event, values, linkedin_config())

    assert built.body["user"].get("userInfo") == expected_user_info
