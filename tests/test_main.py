"""Tests for CLI wiring."""

import json

import pytest

from raidhost.config import PoolConfig, SessionConfig
from raidhost.exceptions import ConfigError
from raidhost.main import build_supervisor, main


class TestBuildSupervisor:

    def test_dry_run(self, tmp_path):
        catalog = tmp_path / "raids.txt"
        catalog.write_text("AA-Pikachu-5-6\n")
        config = PoolConfig(sessions=[SessionConfig("dry", "localhost", slots=[0, 69, 94])])

        supervisor = build_supervisor(config, dry_run=True, catalog_path=str(catalog))

        assert list(supervisor.statuses()) == ["dry"]
        assert supervisor.catalog[0].seed == 0xAA
        assert supervisor.coordinates.lookup("blueberry", "blueberry-094").x == 94.0

    def test_dens_required_without_dry_run(self):
        config = PoolConfig(sessions=[SessionConfig("s", "10.0.0.2")])
        with pytest.raises(ConfigError, match="den coordinates"):
            build_supervisor(config)

    def test_history_path(self, tmp_path):
        config = PoolConfig()
        path = tmp_path / "history.json"
        supervisor = build_supervisor(config, dry_run=True, history_path=str(path))
        assert supervisor.history is not None
        assert path.parent.exists()


class TestMain:

    def test_bad_config_file(self, tmp_path):
        path = tmp_path / "pool.json"
        path.write_text(json.dumps({"bot": {"nope": 1}}))
        assert main(["--config", str(path)]) == 1

    def test_bad_request(self):
        assert main(["--dry-run", "--request", "not-a-raid"]) == 1

    def test_missing_catalog(self, tmp_path):
        assert main(["--dry-run", "--catalog", str(tmp_path / "missing.txt")]) == 1

    def test_config_required(self):
        with pytest.raises(SystemExit):
            main([])

    def test_corrupt_history(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("{not json")
        assert main(["--dry-run", "--history", str(path)]) == 1
