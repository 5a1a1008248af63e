# tests/test_reporter.py
import csv
import json
import os

import pytest

from crawler import db
from scheduler import reporter
from utils import alerts


@pytest.fixture
def sent(monkeypatch):
    """Capture send_alert calls made by the reporter instead of talking SMTP."""
    calls = []

    def fake_send(subject, body, attachments=None):
        calls.append({"subject": subject, "body": body, "attachments": attachments})
        return True

    monkeypatch.setattr(reporter, "send_alert", fake_send)
    return calls


@pytest.mark.asyncio
async def test_collect_scrape_status(fake_db):
    fake_db.food_products.docs = [
        {"_id": "usda_1", "source": "usda"},
        {"_id": "off_1", "source": "off"},
    ]
    for i in range(3):
        await db.insert_job("off", "INCREMENTAL", str(i))

    status = await reporter.collect_scrape_status(job_limit=2)

    assert status["catalog"] == {"total": 2, "by_source": {"usda": 1, "off": 1}}
    assert len(status["recent_jobs"]) == 2
    assert status["configs"] == []


@pytest.mark.asyncio
async def test_generate_scrape_report_writes_files_and_mails(tmp_path, monkeypatch, fake_db, sent):
    monkeypatch.setattr(reporter, "REPORT_DIR", str(tmp_path))
    job_id = await db.insert_job("usda", "INCREMENTAL", "1")
    await db.update_job(job_id, {"status": "FAILED", "last_error": "HTTP 503"})

    result = await reporter.generate_scrape_report()

    assert result["sent"] is True
    assert os.path.dirname(result["json_path"]) == str(tmp_path)
    with open(result["json_path"], encoding="utf-8") as f:
        snapshot = json.load(f)
    assert snapshot["recent_jobs"][0]["status"] == "FAILED"

    with open(result["csv_path"], newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert list(rows[0]) == reporter.JOB_COLUMNS
    assert rows[0]["last_error"] == "HTTP 503"

    assert sent[0]["subject"] == "[Scraper] 1 failed job(s) in recent runs"
    assert sent[0]["attachments"] == [result["json_path"], result["csv_path"]]


def test_send_alert_skipped_without_smtp(monkeypatch):
    monkeypatch.setattr(alerts, "SMTP_HOST", None)
    assert alerts.send_alert("subject", "body") is False


def test_send_alert_uses_starttls_and_login(monkeypatch, tmp_path):
    report = tmp_path / "report.csv"
    report.write_text("a,b\n1,2\n")
    servers = []

    class FakeSMTP:
        def __init__(self, host, port):
            self.host, self.port = host, port
            self.calls = []
            self.sent = []
            servers.append(self)

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def ehlo(self):
            self.calls.append("ehlo")

        def has_extn(self, name):
            return name == "starttls"

        def starttls(self):
            self.calls.append("starttls")

        def login(self, user, password):
            self.calls.append(("login", user))

        def send_message(self, msg):
            self.sent.append(msg)

    monkeypatch.setattr(alerts, "SMTP_HOST", "smtp.test")
    monkeypatch.setattr(alerts, "SMTP_PORT", 587)
    monkeypatch.setattr(alerts, "SMTP_USER", "ops")
    monkeypatch.setattr(alerts, "SMTP_PASS", "secret")
    monkeypatch.setattr(alerts, "ALERT_EMAIL", "ops@example.com")
    monkeypatch.setattr(alerts.smtplib, "SMTP", FakeSMTP)

    assert alerts.send_alert("Report", "body", [str(report), str(tmp_path / "missing.json")])

    server = servers[0]
    assert (server.host, server.port) == ("smtp.test", 587)
    assert server.calls == ["ehlo", "starttls", "ehlo", ("login", "ops")]
    msg = server.sent[0]
    assert msg["To"] == "ops@example.com"
    assert [a.get_filename() for a in msg.iter_attachments()] == ["report.csv"]


def test_send_alert_smtp_failure_returns_false(monkeypatch):
    def refuse(host, port):
        raise ConnectionRefusedError("no server")

    monkeypatch.setattr(alerts, "SMTP_HOST", "smtp.test")
    monkeypatch.setattr(alerts, "SMTP_PORT", 587)
    monkeypatch.setattr(alerts, "ALERT_EMAIL", "ops@example.com")
    monkeypatch.setattr(alerts.smtplib, "SMTP", refuse)

    assert alerts.send_alert("Report", "body") is False


def test_write_and_send_report_is_plain_function(tmp_path, sent):
    """The blocking step runs outside the event loop, so it must not be a coroutine."""
    status = {
        "generated_at": "2026-01-05T03:00:00+00:00",
        "catalog": {"total": 0, "by_source": {"usda": 0, "off": 0}},
        "configs": [],
        "recent_jobs": [],
    }

    result = reporter.write_and_send_report(status, str(tmp_path / "nested"))

    assert result["json_path"].endswith("scrape_report_2026-01-05.json")
    assert os.path.exists(result["csv_path"])
    assert sent[0]["subject"] == "[Scraper] Scrape status report"
