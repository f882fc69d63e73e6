from keyword_crawl import cli


def test_queue_command_prints_descriptors(monkeypatch, capsys) -> None:
    monkeypatch.setenv("KEYWORDS_CSV", "python,react")
    monkeypatch.setenv("USE_EXPERIENCE_LEVELS", "true")
    monkeypatch.setenv("EXPERIENCE_LEVELS_CSV", "fresher")

    assert cli.main(["queue"]) == 0

    out = capsys.readouterr().out
    assert "python fresher" in out
    assert "total: 4" in out


def test_healthcheck_reports_missing_env(monkeypatch, capsys) -> None:
    monkeypatch.delenv("WEBHOOK_URL", raising=False)
    monkeypatch.delenv("SCRAPE_MODE", raising=False)

    assert cli.main(["healthcheck"]) == 1
    assert "WEBHOOK_URL" in capsys.readouterr().out


def test_healthcheck_opens_store(monkeypatch, capsys, tmp_path) -> None:
    monkeypatch.setenv("WEBHOOK_URL", "https://hooks.example.test/crawl")
    monkeypatch.delenv("SCRAPE_MODE", raising=False)
    monkeypatch.setenv("JOBS_DB_PATH", str(tmp_path / "jobs.sqlite"))

    assert cli.main(["healthcheck"]) == 0
    out = capsys.readouterr().out
    assert "last run: none" in out
    assert "healthcheck passed" in out


def test_invalid_config_exits_nonzero(monkeypatch, capsys) -> None:
    monkeypatch.setenv("WEBHOOK_URL", "http://not-https.test")

    assert cli.main(["queue"]) == 1
    assert "https" in capsys.readouterr().out


def test_test_webhook_sends_event(monkeypatch, capsys) -> None:
    sent: list[dict] = []
    monkeypatch.setenv("WEBHOOK_URL", "https://hooks.example.test/crawl")
    monkeypatch.setattr(cli, "send_webhook_event", lambda url, payload, timeout: sent.append(payload))

    assert cli.main(["test-webhook"]) == 0
    assert sent[0]["event"] == "test"
