from typer.testing import CliRunner

from event_replay.main import app

runner = CliRunner()


def test_help_shows_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "send" in result.output
    assert "validate" in result.output
    assert "check-api" in result.output


def test_send_help_lists_channels():
    result = runner.invoke(app, ["send", "--help"])
    assert result.exit_code == 0
    assert "webhook" in result.output
    assert "linkedin" in result.output


def test_validate_requires_csv(tmp_path):
    result = runner.invoke(
        app,
        ["--log-dir", str(tmp_path / "logs"), "--report-dir", str(tmp_path / "reports"), "validate"],
    )
    assert result.exit_code == 2
    assert "--csv is required" in result.output


def test_send_webhook_requires_existing_csv(tmp_path):
    result = runner.invoke(
        app,
        [
            "--log-dir",
            str(tmp_path / "logs"),
            "--report-dir",
            str(tmp_path / "reports"),
            "send",
            "webhook",
            "--csv",
            str(tmp_path / "missing.csv"),
            "--url",
            "https://hooks.example.com/r",
        ],
    )
    assert result.exit_code == 2
    assert "CSV file not found" in result.output


def test_invalid_log_level_exits_with_2(tmp_path):
    result = runner.invoke(app, ["--log-level", "LOUD", "--log-dir", str(tmp_path), "validate"])
    assert result.exit_code == 2
