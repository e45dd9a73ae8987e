"""
Unit tests for the command-line entry point.

Covers:
- poll-once prints a JSON poll report
- argument errors exit with usage
"""

import json

import pytest

from knowledge_service import cli


class TestCli:
    def test_poll_once_prints_report(self, monkeypatch, capsys):
        monkeypatch.setenv("KS_QDRANT_BACKEND", "memory")

        assert cli.main(["poll-once"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["processed"] == 0
        assert report["errors"] == []

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            cli.main([])

    def test_serve_overrides_bind_address(self, monkeypatch):
        captured = {}
        monkeypatch.setattr(
            cli, "serve", lambda settings: captured.update(host=settings.http.host, port=settings.http.port)
        )

        cli.main(["serve", "--host", "0.0.0.0", "--port", "9100"])

        assert captured == {"host": "0.0.0.0", "port": 9100}
