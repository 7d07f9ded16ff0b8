"""
Unit tests for configuration and the settings document.
"""
import json

import pytest

from config import (
    ITEMS_FILE_KEY,
    ITEMS_FILENAME,
    ORDERS_FILENAME,
    Config,
    SettingsDocument,
)


@pytest.mark.unit
class TestSettingsDocument:
    """Tests for SettingsDocument."""

    def test_missing_file_reads_empty(self, temp_dir):
        assert SettingsDocument(temp_dir / "settings.json").read() == {}

    def test_set_and_unset(self, temp_dir):
        doc = SettingsDocument(temp_dir / "settings.json")
        doc.set("itemsFile", "/tmp/items.json")
        assert json.loads((temp_dir / "settings.json").read_text())["itemsFile"] == "/tmp/items.json"
        doc.unset("itemsFile")
        assert doc.read() == {}

    def test_cached_until_invalidated(self, temp_dir):
        path = temp_dir / "settings.json"
        doc = SettingsDocument(path)
        doc.set("a", 1)
        path.write_text(json.dumps({"a": 2}), encoding="utf-8")
        assert doc.get("a") == 1
        doc.invalidate()
        assert doc.get("a") == 2

    def test_corrupt_or_non_object_reads_empty(self, temp_dir):
        path = temp_dir / "settings.json"
        path.write_text("{oops", encoding="utf-8")
        assert SettingsDocument(path).read() == {}
        path.write_text("[1, 2]", encoding="utf-8")
        assert SettingsDocument(path).read() == {}

    def test_read_returns_copy(self, temp_dir):
        doc = SettingsDocument(temp_dir / "settings.json")
        doc.read()["x"] = 1
        assert doc.read() == {}


@pytest.mark.unit
class TestConfig:
    """Tests for Config defaults and the settings overlay."""

    def test_default_collection_paths(self, temp_dir):
        config = Config(data_dir=temp_dir)
        assert config.items_path == temp_dir / ITEMS_FILENAME
        assert config.orders_path == temp_dir / ORDERS_FILENAME

    def test_relocated_items_path(self, temp_dir):
        config = Config(data_dir=temp_dir)
        config.settings.set(ITEMS_FILE_KEY, str(temp_dir / "shared" / "items.json"))
        assert config.items_path == temp_dir / "shared" / "items.json"

    def test_settings_overlay(self, temp_dir):
        (temp_dir / "settings.json").write_text(
            json.dumps({"lease_seconds": "45", "default_bubble": "Shelf", "auto_derive": False}),
            encoding="utf-8",
        )
        config = Config(data_dir=temp_dir)
        assert config.lease_seconds == 45
        assert config.default_bubble == "Shelf"
        assert config.auto_derive is False

    def test_priority_order(self, temp_dir, monkeypatch):
        monkeypatch.setenv("STOCKFLOW_LEASE_SECONDS", "30")
        monkeypatch.setenv("POLL_INTERVAL", "600")
        (temp_dir / "settings.json").write_text(json.dumps({"lease_seconds": 45}), encoding="utf-8")

        config = Config(data_dir=temp_dir, lease_seconds=5, poll_interval_seconds=60)

        assert config.lease_seconds == 45           # settings.json beats the constructor
        assert config.poll_interval_seconds == 60   # constructor beats the environment
        config.lease_seconds = 10
        assert config.lease_seconds == 10

    def test_bad_setting_ignored(self, temp_dir, monkeypatch):
        monkeypatch.delenv("STOCKFLOW_LEASE_SECONDS", raising=False)
        (temp_dir / "settings.json").write_text(json.dumps({"lease_seconds": "soon"}), encoding="utf-8")
        assert Config(data_dir=temp_dir).lease_seconds == 20

    def test_environment(self, temp_dir, monkeypatch):
        monkeypatch.setenv("STOCKFLOW_SOURCES", "world, cbk,")
        monkeypatch.setenv("STOCKFLOW_LEASE_SECONDS", "30")
        config = Config(data_dir=temp_dir)
        assert config.enabled_sources == ["world", "cbk"]
        assert config.lease_seconds == 30
