import pytest

from depot_packer.exceptions import ConfigurationError
from depot_packer.models.config import AppConfig
from depot_packer.storage.config_manager import ConfigManager


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "conf" / "config.ini"
    manager = ConfigManager(path)
    manager.save_new_config(
        {
            "output_dir": "/srv/depots",
            "compression_password_enabled": True,
            "compression_password": "50%off",
        }
    )

    config = ConfigManager(path).load_config()

    assert config.output_dir == "/srv/depots"
    assert config.effective_compression_password == "50%off"
    assert config.config_path == str(path.parent)
    assert config.downloader_path == "DepotDownloader"


def test_cli_overrides_skip_none(tmp_path):
    path = tmp_path / "config.ini"
    ConfigManager(path).save_new_config({"output_dir": "/srv/depots"})

    config = ConfigManager(path).load_config(
        {"output_dir": None, "skip_compression": True}
    )

    assert config.output_dir == "/srv/depots"
    assert config.skip_compression is True


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="depot-packer init"):
        ConfigManager(tmp_path / "config.ini").load_config()


def test_missing_keys_are_migrated(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("[DEFAULT]\narchiver_path = 7z\n", encoding="utf-8")

    config = ConfigManager(path).load_config()

    assert config.archiver_path == "7z"
    assert config.log_line_cap == 10000
    content = path.read_text(encoding="utf-8")
    for key in AppConfig.get_ini_keys():
        assert key in content


def test_invalid_integer(tmp_path):
    path = tmp_path / "config.ini"
    ConfigManager(path).save_new_config({})
    path.write_text(
        path.read_text(encoding="utf-8").replace(
            "log_line_cap = 10000", "log_line_cap = lots"
        ),
        encoding="utf-8",
    )
    with pytest.raises(ConfigurationError, match="Invalid value"):
        ConfigManager(path).load_config()


def test_validation_failure_on_load(tmp_path):
    path = tmp_path / "config.ini"
    ConfigManager(path).save_new_config({})
    with pytest.raises(ConfigurationError, match="validation failed"):
        ConfigManager(path).load_config({"console_flush_interval_ms": 1})


def test_password_enabled_without_password(tmp_path):
    with pytest.raises(ConfigurationError):
        ConfigManager(tmp_path / "config.ini").save_new_config(
            {"compression_password_enabled": True}
        )
    assert not (tmp_path / "config.ini").exists()
