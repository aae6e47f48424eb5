"""Unit tests for utils/persistence.py."""

import json
from unittest.mock import patch

import pytest

from fleet_agent.utils.persistence import read_json, write_json


@pytest.mark.unit
class TestPersistence:

    def test_write_then_read(self, tmp_path):
        path = tmp_path / "nested" / "state.json"

        write_json(path, {"value": "booting", "startup_tags": ["a"]})

        assert read_json(path) == {"value": "booting", "startup_tags": ["a"]}

    def test_overwrites_existing(self, tmp_path):
        path = tmp_path / "past_scripts.json"
        write_json(path, ["one"])

        write_json(path, ["one", "two"])

        assert read_json(path) == ["one", "two"]

    def test_failed_write_keeps_previous_file(self, tmp_path):
        path = tmp_path / "state.json"
        write_json(path, {"value": "operational"})

        with patch("fleet_agent.utils.persistence.json.dump", side_effect=TypeError("not serializable")):
            with pytest.raises(TypeError):
                write_json(path, {"value": object()})

        assert read_json(path) == {"value": "operational"}
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_read_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_json(tmp_path / "missing.json")

    def test_read_corrupt(self, tmp_path):
        path = tmp_path / "login_policy.json"
        path.write_text("{ invalid json }")

        with pytest.raises(json.JSONDecodeError):
            read_json(path)
