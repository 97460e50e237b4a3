import json
from pathlib import Path

import httpx
from typer.testing import CliRunner

from event_replay.infra.http.client import HttpApiClient
from event_replay.main import app

runner = CliRunner()
RUN_ID = "test-run"


def patch_client_with_transport(monkeypatch, responder):
    import event_replay.main as cli_module

    transport = httpx.MockTransport(responder)

    def factory(*args, **kwargs):
        kwargs["transport"] = transport
        return HttpApiClient(*args, **kwargs)

    monkeypatch.setattr(cli_module, "HttpApiClient", factory)
    monkeypatch.setattr(cli_module, "pauseSeconds", lambda _seconds: None)


def base_args(tmp_path: Path) -> list[str]:
    return [
        "--run-id",
        RUN_ID,
        "--log-dir",
        str(tmp_path / "logs"),
        "--report-dir",
        str(tmp_path / "reports"),
        "--output-dir",
        str(tmp_path / "output"),
    ]


def write_csv(tmp_path: Path, text: str) -> str:
    path = tmp_path / "leads.csv"
    path.write_text(text, encoding="utf-8")
    return str(path)


def read_report(tmp_path: Path, command: str) -> dict:
    return json.loads((tmp_path / "reports" / f"report_{command}_{RUN_ID}.json").read_text(encoding="utf-8"))


def test_webhook_send_skips_record_without_email(tmp_path, monkeypatch):
    bodies: list[dict] = []

    def responder(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content.decode("utf-8")))
        return httpx.Response(201, json={"id": "evt-1"})

    patch_client_with_transport(monkeypatch, responder)
    csv_path = write_csv(tmp_path, "email,firstName\njohn@x.com,John\n,Jane\n")

    result = runner.invoke(
        app,
        [*base_args(tmp_path), "send", "webhook", "--csv", csv_path, "--url", "https://hooks.example.com/r", "--yes"],
    )

    assert result.exit_code == 1
    assert bodies == [{"email": "john@x.com"}]
    assert "=== Sending complete ===" in result.output
    assert "Sent: 1" in result.output
    assert "Failed: 0" in result.output
    assert "Skipped: 1" in result.output
    assert "201 Created: 1 calls (100.0%)" in result.output

    report = read_report(tmp_path, "send-webhook")
    assert report["status"] == "PARTIAL"
    assert report["meta"]["channel"] == "webhook"
    assert report["summary"]["sent"] == 1
    assert report["summary"]["skipped"] == 1
    assert report["summary"]["records_total"] == 2
    assert [item["record_index"] for item in report["items"]] == [1]
    assert report["items"][0]["status"] == "SKIPPED"
    assert report["items"][0]["diagnostics"][0]["code"] == "EMAIL_MISSING"

    sent_path = tmp_path / "output" / f"sent-events-webhook-{RUN_ID}.json"
    rows = json.loads(sent_path.read_text(encoding="utf-8"))
    assert len(rows) == 1
    assert rows[0]["email"] == "john@x.com"
    assert rows[0]["statusCode"] == 201
    assert rows[0]["responseId"] == "evt-1"


def test_webhook_send_all_delivered_exits_zero(tmp_path, monkeypatch):
    patch_client_with_transport(monkeypatch, lambda _r: httpx.Response(200, text="ok"))
    csv_path = write_csv(tmp_path, "email\na@x.com\nb@x.com\n")

    result = runner.invoke(
        app,
        [*base_args(tmp_path), "send", "webhook", "--csv", csv_path, "--url", "https://hooks.example.com/r", "-y"],
    )

    assert result.exit_code == 0
    assert "Sent: 2" in result.output
    assert "No failed events" in result.output
    assert read_report(tmp_path, "send-webhook")["status"] == "SUCCESS"


def test_webhook_server_errors_are_retried_once(tmp_path, monkeypatch):
    calls = {"count": 0}

    def responder(_request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(500, json={"message": "upstream exploded"})

    patch_client_with_transport(monkeypatch, responder)
    csv_path = write_csv(tmp_path, "email\na@x.com\n")

    result = runner.invoke(
        app,
        [*base_args(tmp_path), "send", "webhook", "--csv", csv_path, "--url", "https://hooks.example.com/r", "--yes"],
    )

    assert result.exit_code == 1
    assert calls["count"] == 2
    assert "Failed: 1" in result.output
    assert "500: upstream exploded: 1 events (100.0%)" in result.output
    assert "Retry recommendations:" in result.output
    assert not (tmp_path / "output" / f"sent-events-webhook-{RUN_ID}.json").exists()

    report = read_report(tmp_path, "send-webhook")
    assert report["status"] == "FAILED"
    assert report["summary"]["calls_total"] == 2
    assert report["items"][0]["meta"]["call"] == "retry 1"


def test_declined_confirmation_sends_nothing(tmp_path, monkeypatch):
    calls = {"count": 0}

    def responder(_request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200)

    patch_client_with_transport(monkeypatch, responder)
    csv_path = write_csv(tmp_path, "email\na@x.com\n")

    result = runner.invoke(
        app,
        [*base_args(tmp_path), "send", "webhook", "--csv", csv_path, "--url", "https://hooks.example.com/r"],
        input="n\n",
    )

    assert result.exit_code == 1
    assert calls["count"] == 0
    assert "Operation cancelled" in result.output
    assert read_report(tmp_path, "send-webhook")["status"] == "CANCELLED"


def test_linkedin_send_batches_events(tmp_path, monkeypatch):
    batches: list[list[dict]] = []

    def responder(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer tok-123"
        assert request.headers["LinkedIn-Version"] == "202508"
        assert request.headers["X-Restli-Protocol-Version"] == "2.0.0"
        elements = json.loads(request.content.decode("utf-8"))["elements"]
        batches.append(elements)
        return httpx.Response(
            200,
            json={"elements": [{"status": 201, "id": f"ev-{len(batches)}-{i}"} for i in range(len(elements))]},
        )

    patch_client_with_transport(monkeypatch, responder)
    csv_path = write_csv(
        tmp_path,
        "email,firstName,lastName,companyName\na@x.com,Ann,Lee,Acme\nb@x.com,Bob,,Acme\nc@x.com,,,\n",
    )
    monkeypatch.setenv("EVENT_REPLAY_LINKEDIN_ACCESS_TOKEN", "tok-123")

    result = runner.invoke(
        app,
        [
            *base_args(tmp_path),
            "send",
            "linkedin",
            "--csv",
            csv_path,
            "--conversion-id",
            "555",
            "--batch-size",
            "2",
            "--yes",
        ],
    )

    assert result.exit_code == 0
    assert [len(b) for b in batches] == [2, 1]
    assert batches[0][0]["conversion"] == "urn:lla:llaPartnerConversion:555"
    assert batches[0][0]["user"]["userInfo"] == {"firstName": "Ann", "lastName": "Lee", "companyName": "Acme"}
    assert "userInfo" not in batches[0][1]["user"]
    assert "Sent: 3" in result.output
    assert "tok-123" not in result.output

    log_text = (tmp_path / "logs" / f"send-linkedin_{RUN_ID}.log").read_text(encoding="utf-8")
    assert "tok-123" not in log_text

    rows = json.loads((tmp_path / "output" / f"sent-events-linkedin-{RUN_ID}.json").read_text(encoding="utf-8"))
    assert [row["batchIndex"] for row in rows] == [1, 1, 2]
    assert rows[2]["responseId"] == "ev-2-0"


def test_linkedin_send_requires_conversion_id(tmp_path, monkeypatch):
    patch_client_with_transport(monkeypatch, lambda _r: httpx.Response(200))
    csv_path = write_csv(tmp_path, "email\na@x.com\n")

    result = runner.invoke(
        app,
        [*base_args(tmp_path), "send", "linkedin", "--csv", csv_path, "--token", "tok", "--yes"],
    )

    assert result.exit_code == 2
    assert "conversion id is required" in result.output
    error = read_report(tmp_path, "send-linkedin")["context"]["error"]
    assert error["code"] == "CONFIG_INVALID"
    assert error["details"] == {"field": "linkedin_conversion_id"}


def test_validate_reports_rejections_without_network(tmp_path, monkeypatch):
    def responder(_request: httpx.Request) -> httpx.Response:
        raise AssertionError("validate must not call the network")

    patch_client_with_transport(monkeypatch, responder)
    csv_path = write_csv(tmp_path, "email,currencyCode,conversionValue\na@x.com,EURO,5\n,USD,1\n")

    result = runner.invoke(app, [*base_args(tmp_path), "validate", "--csv", csv_path])

    assert result.exit_code == 1
    assert "validated=2 valid=1 rejected=1" in result.output

    report = read_report(tmp_path, "validate")
    assert report["summary"]["records_valid"] == 1
    assert report["summary"]["warnings_total"] >= 1


def test_check_api_treats_401_as_reachable(tmp_path, monkeypatch):
    patch_client_with_transport(monkeypatch, lambda _r: httpx.Response(401, json={"message": "Unauthorized"}))

    result = runner.invoke(app, [*base_args(tmp_path), "check-api"])

    assert result.exit_code == 0
    assert "authentication required" in result.output
    assert read_report(tmp_path, "check-api")["context"]["api_check"]["status_code"] == 401


def test_check_api_network_failure_exits_2(tmp_path, monkeypatch):
    def responder(_request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route to host")

    patch_client_with_transport(monkeypatch, responder)

    result = runner.invoke(app, [*base_args(tmp_path), "check-api"])

    assert result.exit_code == 2
    assert "API unreachable" in result.output
