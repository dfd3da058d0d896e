"""
Tests for configuration loading, overrides and validation.
"""

import json
import logging
import logging.handlers

import pytest
import yaml

from config.config_manager import ConfigManager
from config.settings import CoordinatorSettings, StorageSettings, SystemSettings
from fleet_coordinator.coordination_engine import CoordinationEngine


class TestSettings:
    """Test cases for the settings dataclasses."""

    def test_defaults(self):
        settings = SystemSettings()

        assert settings.coordinator.min_battery_for_eligibility == 20
        assert settings.coordinator.zone_matching == "any"
        assert settings.coordinator.scheduling_interval == 5.0
        assert settings.coordinator.aging_interval_seconds is None
        assert settings.storage.backend == "memory"
        assert settings.logging.level == "INFO"

    @pytest.mark.parametrize("kwargs", [
        {'zone_matching': 'fuzzy'},
        {'robot_selection': 'random'},
        {'min_battery_for_eligibility': 120},
        {'scheduling_interval': 0},
        {'aging_interval_seconds': -5},
    ])
    def test_invalid_coordinator_settings(self, kwargs):
        with pytest.raises(ValueError):
            CoordinatorSettings(**kwargs)

    def test_invalid_storage_backend(self):
        with pytest.raises(ValueError):
            StorageSettings(backend="postgres")

    def test_round_trip_through_dict(self):
        settings = SystemSettings.from_dict({'coordinator': {'zone_matching': 'exact'}, 'logging': None})

        assert settings.coordinator.zone_matching == 'exact'
        assert SystemSettings.from_dict(settings.to_dict()) == settings


class TestConfigManager:
    """Test cases for ConfigManager."""

    @pytest.fixture
    def config_dir(self, tmp_path, monkeypatch):
        for name in ('FLEET_MIN_BATTERY', 'FLEET_ZONE_MATCHING', 'FLEET_SCHEDULING_INTERVAL', 'FLEET_LOG_LEVEL'):
            monkeypatch.delenv(name, raising=False)
        return tmp_path

    def test_creates_default_config(self, config_dir):
        manager = ConfigManager(str(config_dir))

        assert manager.load_config()
        assert (config_dir / "system_config.yaml").exists()
        assert manager.system_settings == SystemSettings()
        assert manager.get_setting('coordinator.zone_matching') == 'any'

    def test_load_yaml(self, config_dir):
        (config_dir / "system_config.yaml").write_text(yaml.dump({
            'coordinator': {'min_battery_for_eligibility': 35, 'robot_selection': 'nearest'},
            'storage': {'max_log_entries': 50}
        }))
        manager = ConfigManager(str(config_dir))

        assert manager.load_config()
        assert manager.system_settings.coordinator.min_battery_for_eligibility == 35
        assert manager.system_settings.coordinator.robot_selection == 'nearest'
        assert manager.system_settings.storage.max_log_entries == 50
        assert manager.get_coordinator_config()['robot_selection'] == 'nearest'
        assert manager.get_storage_config() == {'max_log_entries': 50}

    def test_load_json(self, config_dir):
        (config_dir / "fleet.json").write_text(json.dumps({'coordinator': {'zone_matching': 'preferred'}}))
        manager = ConfigManager(str(config_dir))

        assert manager.load_config("fleet.json")
        assert manager.system_settings.coordinator.zone_matching == 'preferred'

    def test_invalid_values_fail_loading(self, config_dir):
        (config_dir / "system_config.yaml").write_text(yaml.dump({'coordinator': {'zone_matching': 'fuzzy'}}))
        assert not ConfigManager(str(config_dir)).load_config()

    def test_unknown_format(self, config_dir):
        (config_dir / "system_config.ini").write_text("[coordinator]")
        assert not ConfigManager(str(config_dir)).load_config("system_config.ini")

    def test_env_overrides(self, config_dir, monkeypatch):
        monkeypatch.setenv('FLEET_MIN_BATTERY', '40')
        monkeypatch.setenv('FLEET_ZONE_MATCHING', 'EXACT')
        monkeypatch.setenv('FLEET_SCHEDULING_INTERVAL', '0.5')
        monkeypatch.setenv('FLEET_LOG_LEVEL', 'debug')
        manager = ConfigManager(str(config_dir))

        assert manager.load_config()
        coordinator = manager.system_settings.coordinator
        assert coordinator.min_battery_for_eligibility == 40
        assert coordinator.zone_matching == 'exact'
        assert coordinator.scheduling_interval == 0.5
        assert manager.system_settings.logging.level == 'DEBUG'

    def test_set_and_save(self, config_dir):
        manager = ConfigManager(str(config_dir))
        manager.load_config()
        manager.set_setting('coordinator.charge_complete_level', 90)
        manager.set_setting('custom.nested.value', 1)

        assert manager.save_config()
        reloaded = ConfigManager(str(config_dir))
        reloaded.load_config()
        assert reloaded.get_setting('coordinator.charge_complete_level') == 90
        assert reloaded.get_setting('custom.nested.value') == 1
        assert reloaded.get_setting('missing.key', 'fallback') == 'fallback'

    def test_validate_config(self, config_dir):
        manager = ConfigManager(str(config_dir))
        manager.load_config()
        assert manager.validate_config()

        manager.set_setting('coordinator.charge_complete_level', 10)
        assert not manager.validate_config()

        manager.set_setting('coordinator.charge_complete_level', 80)
        manager.set_setting('logging.level', 'LOUD')
        assert not manager.validate_config()

    def test_configure_logging(self, config_dir):
        manager = ConfigManager(str(config_dir))
        manager.load_config()
        manager.set_setting('logging.file', str(config_dir / "fleet.log"))
        manager.set_setting('logging.console_output', False)
        manager.validate_config()

        root = logging.getLogger()
        before = list(root.handlers)
        level = root.level
        try:
            manager.configure_logging()
            added = [h for h in root.handlers if h not in before]
            assert len(added) == 1
            assert isinstance(added[0], logging.handlers.RotatingFileHandler)
        finally:
            for handler in root.handlers[:]:
                if handler not in before:
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(level)

    def test_engine_from_settings(self, config_dir):
        (config_dir / "system_config.yaml").write_text(yaml.dump({
            'coordinator': {'min_battery_for_eligibility': 50},
            'storage': {'max_log_entries': 3}
        }))
        manager = ConfigManager(str(config_dir))
        manager.load_config()

        engine = CoordinationEngine.from_settings(manager.system_settings)
        engine.register_robot("Low", "AGV", battery_level=45)
        engine.register_robot("High", "AGV", battery_level=55)

        assert [r.robot_name for r in engine.list_eligible_robots()] == ["High"]
        for _ in range(5):
            engine.submit_task("T")
        assert len(engine.list_logs()) == 3
