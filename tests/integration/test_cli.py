"""Tests for the command line entry point."""

import json

import pytest
from structlog.testing import capture_logs

from grants_ingest import __main__ as cli
from grants_ingest import __version__


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep log events off stdout, which carries the JSON results."""
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    with capture_logs():
        yield


def run(argv):
    with pytest.raises(SystemExit) as exc:
        cli.main(argv)
    return exc.value.code


class TestCli:
    """Tests for main function."""

    def test_version(self, capsys):
        """Test that --version prints the version and exits 0."""
        assert run(["--version"]) == 0
        assert capsys.readouterr().out.strip() == f"grants-ingest {__version__}"

    def test_no_command(self, capsys):
        """Test that a missing command prints help and exits 2."""
        assert run([]) == 2
        assert "usage:" in capsys.readouterr().err

    def test_sources(self, capsys):
        """Test that the catalog is listed as JSON, highest priority first."""
        assert run(["sources"]) == 0

        listed = json.loads(capsys.readouterr().out)
        ids = [s["source_id"] for s in listed]
        assert "grants_gov" in ids
        priorities = [s["priority"] for s in listed]
        assert priorities == sorted(priorities, reverse=True)

    def test_missing_config(self, tmp_path):
        """Test that a missing sources file is a fatal configuration error."""
        assert run(["--config", str(tmp_path / "missing.yml"), "sources"]) == 2

    def test_health_empty_store(self, tmp_path, capsys):
        """Test that health on an empty store reports unhealthy and exits 1."""
        assert run(["--db", str(tmp_path / "grants.db"), "health"]) == 1

        report = json.loads(capsys.readouterr().out)
        assert report["healthy"] is False
        assert report["active_grants_count"] == 0

    def test_expire_empty_store(self, tmp_path, capsys):
        """Test that expire on an empty store succeeds."""
        assert run(["--db", str(tmp_path / "grants.db"), "expire"]) == 0

        result = json.loads(capsys.readouterr().out)
        assert result["job"] == "expire"
        assert result["expired"] == 0

    def test_unknown_source(self, tmp_path):
        """Test that ingesting an unknown source id exits 2."""
        assert run(["--db", str(tmp_path / "grants.db"), "ingest", "--source", "no_such_source"]) == 2

    def test_unusable_store(self, tmp_path):
        """Test that an unusable database path exits 2."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        assert run(["--db", str(blocker / "grants.db"), "health"]) == 2

    def test_ingest_requires_target(self):
        """Test that ingest without --all or --source is a usage error."""
        assert run(["ingest"]) == 2
