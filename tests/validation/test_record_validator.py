from __future__ import annotations

from event_replay.domain.models import RawRecord
from event_replay.domain.run_config import ChannelKind, RunConfiguration
from event_replay.domain.timestamps import DAY_MS
from event_replay.domain.validation.currency import WARN_BAD_CODE
from event_replay.domain.validation.validator import RecordValidator

NOW = 1_700_000_000_000
WINDOW_MS = 90 * 24 * 60 * 60 * 1000


def make_config(use_conversion_time: bool = False, reset_old_timestamps: bool = False) -> RunConfiguration:
    return RunConfiguration(
        channel=ChannelKind.WEBHOOK,
        endpoint_url="https://hooks.example.com/replay",
        rate_per_minute=20,
        use_conversion_time=use_conversion_time,
        reset_old_timestamps=reset_old_timestamps,
    )


def make_record(**values: str) -> RawRecord:
    return RawRecord(index=0, line_no=2, values=values)


def test_validation_is_idempotent():
    validator = RecordValidator()
    record = make_record(email="a@x.com", title="CEO", lastName="Doe", currencyCode="EURO", conversionValue="5")
    config = make_config()

    first = validator.validate(record, 0, config, now_ms=NOW)
    second = validator.validate(record, 0, config, now_ms=NOW)

    assert first == second
    assert first.diagnostics == second.diagnostics


def test_missing_email_is_rejected():
    result = RecordValidator().validate(make_record(email="", firstName="Jane"), 1, make_config(), now_ms=NOW)

    assert result.rejected
    assert result.record_index == 1
    assert result.reasons == ("missing required email field",)
    assert result.error_items[0].code == "EMAIL_MISSING"


def test_whitespace_email_is_rejected():
    result = RecordValidator().validate(make_record(email="   "), 0, make_config(), now_ms=NOW)

    assert result.rejected


def test_record_without_email_column_is_rejected():
    result = RecordValidator().validate(make_record(firstName="Jane"), 0, make_config(), now_ms=NOW)

    assert result.rejected


def test_window_boundary_is_inclusive():
    validator = RecordValidator()
    config = make_config(use_conversion_time=True)
    assert WINDOW_MS == 90 * DAY_MS

    at_boundary = make_record(email="a@x.com", conversionTime=str(NOW - WINDOW_MS))
    one_ms_older = make_record(email="a@x.com", conversionTime=str(NOW - WINDOW_MS - 1))

    assert validator.validate(at_boundary, 0, config, now_ms=NOW).accepted
    rejected = validator.validate(one_ms_older, 0, config, now_ms=NOW)
    assert rejected.rejected
    assert rejected.reasons == ("conversionTime is 90 days old (beyond 90-day recency window)",)


def test_future_conversion_time_is_outside_window():
    config = make_config(use_conversion_time=True)
    record = make_record(email="a@x.com", conversionTime=str(NOW + 3 * DAY_MS))

    result = RecordValidator().validate(record, 0, config, now_ms=NOW)

    assert result.rejected
    assert result.reasons == ("conversionTime is 3 days in the future (outside 90-day recency window)",)


def test_conversion_time_one_ms_ahead_counts_as_one_day():
    config = make_config(use_conversion_time=True)
    record = make_record(email="a@x.com", conversionTime=str(NOW + 1))

    result = RecordValidator().validate(record, 0, config, now_ms=NOW)

    assert result.reasons == ("conversionTime is 1 days in the future (outside 90-day recency window)",)


def test_old_timestamp_tolerated_when_reset_enabled():
    config = make_config(use_conversion_time=True, reset_old_timestamps=True)
    record = make_record(email="a@x.com", conversionTime=str(NOW - 200 * DAY_MS))

    assert RecordValidator().validate(record, 0, config, now_ms=NOW).accepted


def test_old_timestamp_ignored_when_conversion_time_disabled():
    record = make_record(email="a@x.com", conversionTime=str(NOW - 200 * DAY_MS))

    assert RecordValidator().validate(record, 0, make_config(), now_ms=NOW).accepted


def test_non_numeric_conversion_time_is_not_rejected():
    config = make_config(use_conversion_time=True)
    record = make_record(email="a@x.com", conversionTime="yesterday")

    assert RecordValidator().validate(record, 0, config, now_ms=NOW).accepted


def test_incomplete_user_info_is_suppressed_with_warning():
    record = make_record(email="a@x.com", title="CEO", firstName="", lastName="Doe")

    result = RecordValidator().validate(record, 0, make_config(), now_ms=NOW)

    assert result.accepted
    assert result.include_user_info is False
    assert len(result.warnings) == 1
    assert "firstName" in result.warnings[0]
    assert result.warning_items[0].code == "USER_INFO_INCOMPLETE"


def test_single_name_without_trigger_fields_drops_user_info_silently():
    record = make_record(email="a@x.com", firstName="Jane")

    result = RecordValidator().validate(record, 0, make_config(), now_ms=NOW)

    assert result.accepted
    assert result.include_user_info is False
    assert result.warnings == ()


def test_both_names_without_trigger_fields_keep_user_info():
    record = make_record(email="a@x.com", firstName="Jane", lastName="Doe")

    result = RecordValidator().validate(record, 0, make_config(), now_ms=NOW)

    assert result.include_user_info is True
    assert result.warnings == ()


def test_complete_user_info_is_kept():
    record = make_record(email="a@x.com", firstName="Jane", lastName="Doe", companyName="Acme", countryCode="US")

    result = RecordValidator().validate(record, 0, make_config(), now_ms=NOW)

    assert result.include_user_info is True


def test_invalid_currency_only_warns():
    record = make_record(email="a@x.com", currencyCode="EURO", conversionValue="5")

    result = RecordValidator().validate(record, 0, make_config(), now_ms=NOW)

    assert result.accepted
    assert result.warnings == (WARN_BAD_CODE,)


def test_all_rules_run_even_when_email_missing():
    record = make_record(email="", title="CEO", currencyCode="usd")

    result = RecordValidator().validate(record, 0, make_config(), now_ms=NOW)

    assert result.rejected
    assert result.include_user_info is False
    assert len(result.warnings) == 2
