"""Tests for the pushdeploy configuration system."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from pushdeploy.config.loader import (
    apply_env_overrides,
    find_config_file,
    get_config_search_paths,
    load_config,
    load_toml_file,
)
from pushdeploy.config.schema import DeployConfig, RemoteSettings
from pushdeploy.exceptions import ConfigurationError


class TestSchemaDefaults:
    """Test default values in schema models."""

    def test_deploy_config_defaults(self):
        """Test DeployConfig has correct defaults."""
        config = DeployConfig()
        assert config.host is None
        assert config.port == 22
        assert config.user == "deploy"
        assert config.command == "./run"
        assert config.signal == "SIGHUP"
        assert config.ping_path == "/"
        assert config.app_port == 8000
        assert config.version_file == "VERSION"
        assert config.ignore_files == [".gitignore", ".deployignore"]
        assert config.rollback is True
        assert config.tag is True

    def test_derived_paths(self):
        """Test deploy path and PID file derive from the application name."""
        config = DeployConfig(name="myapp")
        assert config.remote_base == "/var/www/myapp"
        assert config.pid_file == "/var/www/myapp/shared/server.pid"

    def test_explicit_paths(self):
        """Test explicit paths win over derived ones."""
        config = DeployConfig(name="myapp", deploy_path="/srv/app/", pid_path="/run/app.pid")
        assert config.remote_base == "/srv/app"
        assert config.pid_file == "/run/app.pid"

    def test_probe_hostname_falls_back_to_host(self):
        """Test the Host header defaults to the SSH host."""
        assert DeployConfig(host="app.example.com").probe_hostname == "app.example.com"
        assert DeployConfig(host="10.0.0.1", hostname="www.example.com").probe_hostname == "www.example.com"
        assert DeployConfig().probe_hostname == "localhost"

    def test_config_is_frozen(self):
        """Test configuration cannot change after loading."""
        config = DeployConfig(host="a.example.com")
        with pytest.raises(ValidationError):
            config.host = "b.example.com"

    def test_remote_settings_projection(self):
        """Test the remote settings carry the process and health options."""
        config = DeployConfig(
            name="myapp",
            host="app.example.com",
            command="bin/serve",
            signal="USR2",
            app_port=9000,
            pre_deploy="make migrate",
            rollback=False,
        )
        settings = config.remote_settings()
        assert isinstance(settings, RemoteSettings)
        assert settings.command == "bin/serve"
        assert settings.signal == "USR2"
        assert settings.app_port == 9000
        assert settings.hostname == "app.example.com"
        assert settings.pid_path == "/var/www/myapp/shared/server.pid"
        assert settings.pre_deploy == "make migrate"
        assert settings.rollback is False

    def test_remote_settings_json_round_trip(self):
        """Test settings survive the trip as JSON."""
        settings = DeployConfig(name="myapp").remote_settings()
        assert RemoteSettings.model_validate_json(settings.model_dump_json()) == settings


class TestConfigFiles:
    """Test config file discovery and parsing."""

    def test_search_paths(self, tmp_path):
        """Test the project file comes before the user file."""
        paths = get_config_search_paths(tmp_path)
        assert paths[0] == tmp_path / "deploy.toml"
        assert paths[1] == Path.home() / ".config" / "pushdeploy" / "deploy.toml"

    def test_find_config_file_none(self, tmp_path):
        """Test no file found returns None."""
        assert find_config_file(tmp_path) is None

    def test_find_user_config(self, tmp_path):
        """Test the user-level file is found when the project has none."""
        user_file = Path.home() / ".config" / "pushdeploy" / "deploy.toml"
        user_file.parent.mkdir(parents=True)
        user_file.write_text('[deploy]\nuser = "www"\n')

        assert find_config_file(tmp_path) == user_file

    def test_load_deploy_table(self, tmp_path):
        """Test the [deploy] table is read."""
        path = tmp_path / "deploy.toml"
        path.write_text('[deploy]\nhost = "app.example.com"\nport = 2222\n\n[other]\nx = 1\n')

        assert load_toml_file(path) == {"host": "app.example.com", "port": 2222}

    def test_load_flat_table(self, tmp_path):
        """Test a file without [deploy] is read as flat options."""
        path = tmp_path / "deploy.toml"
        path.write_text('host = "app.example.com"\n')

        assert load_toml_file(path) == {"host": "app.example.com"}

    def test_invalid_toml(self, tmp_path):
        """Test broken TOML is a configuration error."""
        path = tmp_path / "deploy.toml"
        path.write_text("host = \n")

        with pytest.raises(ConfigurationError):
            load_toml_file(path)


class TestEnvOverrides:
    """Test environment variable overrides."""

    def test_apply_env_overrides(self):
        """Test prefixed variables map onto fields."""
        config_dict = {"host": "from-file"}
        apply_env_overrides(config_dict, {
            "PUSHDEPLOY_HOST": "from-env",
            "PUSHDEPLOY_DEPLOY_PATH": "/srv/app",
            "PUSHDEPLOY_IGNORE_FILES": ".gitignore, .dockerignore",
            "OTHER_HOST": "ignored",
        })
        assert config_dict == {
            "host": "from-env",
            "deploy_path": "/srv/app",
            "ignore_files": [".gitignore", ".dockerignore"],
        }

    def test_empty_values_ignored(self):
        """Test empty variables do not clear file values."""
        config_dict = {"host": "from-file"}
        apply_env_overrides(config_dict, {"PUSHDEPLOY_HOST": ""})
        assert config_dict == {"host": "from-file"}


class TestLoadConfig:
    """Test the full load order."""

    def test_defaults_without_file(self, tmp_path):
        """Test loading with nothing configured."""
        config = load_config(project_dir=tmp_path)
        assert config == DeployConfig()

    def test_file_then_env_then_overrides(self, tmp_path, monkeypatch):
        """Test later sources win over earlier ones."""
        (tmp_path / "deploy.toml").write_text(
            '[deploy]\nhost = "file.example.com"\nuser = "www"\nport = 2200\n'
        )
        (tmp_path / ".env").write_text("PUSHDEPLOY_USER=dotenv\nPUSHDEPLOY_BRANCH=main\n")
        monkeypatch.setenv("PUSHDEPLOY_USER", "environ")

        config = load_config(project_dir=tmp_path, overrides={"port": 2222, "host": None})

        assert config.host == "file.example.com"
        assert config.user == "environ"
        assert config.branch == "main"
        assert config.port == 2222

    def test_env_value_converted(self, tmp_path, monkeypatch):
        """Test string values from the environment are converted by type."""
        monkeypatch.setenv("PUSHDEPLOY_APP_PORT", "9000")
        monkeypatch.setenv("PUSHDEPLOY_ROLLBACK", "false")

        config = load_config(project_dir=tmp_path)

        assert config.app_port == 9000
        assert config.rollback is False

    def test_explicit_missing_file(self, tmp_path):
        """Test naming a file that does not exist fails."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(project_dir=tmp_path, config_file=tmp_path / "nope.toml")

    def test_invalid_value(self, tmp_path):
        """Test a value of the wrong type is a configuration error."""
        (tmp_path / "deploy.toml").write_text('[deploy]\nport = "twenty-two"\n')

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_config(project_dir=tmp_path)
