"""
Unit tests for configuration loading.
"""

import pytest
from unittest.mock import patch

from ledger_sync.config import CollectionConfig, decode_mac_secret, load_settings

SECRET_ENV = {
    "AGENDA_MAC_SECRET_BASE64": "YWdlbmRhLXNlY3JldA==",
    "ALERTS_MAC_SECRET_BASE64": "YWxlcnRzLXNlY3JldA==",
}


class TestDecodeMacSecret:

    def test_valid_secret(self):
        assert decode_mac_secret("YWdlbmRhLXNlY3JldA==") == b"agenda-secret"

    def test_surrounding_whitespace_ignored(self):
        assert decode_mac_secret(" YWdlbmRhLXNlY3JldA==\n") == b"agenda-secret"

    def test_invalid_secret(self):
        with pytest.raises(ValueError, match="not valid base64"):
            decode_mac_secret("***")


class TestCollectionConfig:

    def test_method_names_derived_from_key(self):
        config = CollectionConfig(key="agenda", table="Agenda")

        assert config.view == "Grid view"
        assert config.view_method == "get_agenda"
        assert config.update_method == "update_agenda"
        assert config.update_arg == "new_agenda"
        assert config.key_field is None

    def test_explicit_method_names_kept(self):
        config = CollectionConfig(key="agenda", table="Agenda", view_method="agenda_json")

        assert config.view_method == "agenda_json"

    def test_missing_secret(self):
        with pytest.raises(ValueError, match="No MAC secret configured"):
            CollectionConfig(key="agenda", table="Agenda").mac_secret_bytes


class TestLoadSettings:
    """Test layered settings loading."""

    def test_defaults(self):
        settings = load_settings(environ={}, validate=False)

        assert sorted(settings.collections) == ["agenda", "alerts"]
        assert settings.collections["agenda"].table == "Agenda"
        assert settings.collections["alerts"].table == "Alerts"
        assert settings.network == "testnet"
        assert settings.rpc_url == "https://rpc.testnet.near.org"
        assert settings.coalesce_delay_seconds == 2.0
        assert settings.retry.max_attempts == 5
        assert settings.retry.initial_delay_seconds == 1.0
        assert settings.poll_max_attempts == 20
        assert settings.poll_interval_seconds == 3.0

    def test_environment_overrides(self):
        environ = dict(SECRET_ENV)
        environ.update({
            "AIRTABLE_PERSONAL_ACCESS_TOKEN": "pat-env",
            "AIRTABLE_BASE_ID": "appENV",
            "NETWORK": "mainnet",
            "FACTORY_CONTRACT_ID": "factory.near",
            "COALESCE_DELAY_SECONDS": "0.5",
            "JSON_LOGGING": "true",
        })

        settings = load_settings(environ=environ)

        assert settings.airtable_token == "pat-env"
        assert settings.airtable_base_id == "appENV"
        assert settings.contract_id == "factory.near"
        assert settings.rpc_url == "https://rpc.mainnet.near.org"
        assert settings.coalesce_delay_seconds == 0.5
        assert settings.json_logging is True
        assert settings.mac_secrets() == {"agenda": b"agenda-secret", "alerts": b"alerts-secret"}

    def test_explicit_rpc_url_wins(self):
        environ = {"NETWORK": "mainnet", "NEAR_RPC_URL": "http://localhost:3030"}

        settings = load_settings(environ=environ, validate=False)

        assert settings.rpc_url == "http://localhost:3030"

    def test_missing_secret_fails_validation(self):
        environ = {"AGENDA_MAC_SECRET_BASE64": SECRET_ENV["AGENDA_MAC_SECRET_BASE64"]}

        with pytest.raises(ValueError, match="Missing MAC secret for collection 'alerts'"):
            load_settings(environ=environ)

    def test_malformed_secret_fails_validation(self):
        environ = dict(SECRET_ENV, ALERTS_MAC_SECRET_BASE64="not base64!")

        with pytest.raises(ValueError, match="not valid base64"):
            load_settings(environ=environ)

    def test_yaml_file(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "network: mainnet\n"
            "contract_id: factory.near\n"
            "coalesce_delay_seconds: 5\n"
            "retry:\n"
            "  max_attempts: 3\n"
            "  jitter: 0.1\n"
            "collections:\n"
            "  agenda:\n"
            "    key_field: Id\n"
            "  minutes:\n"
            "    table: Meeting Minutes\n"
            "    view: Published\n"
        )

        settings = load_settings(str(config_file), environ={}, validate=False)

        assert settings.rpc_url == "https://rpc.mainnet.near.org"
        assert settings.contract_id == "factory.near"
        assert settings.coalesce_delay_seconds == 5
        assert settings.retry.max_attempts == 3
        assert settings.retry.jitter == 0.1
        assert settings.collections["agenda"].key_field == "Id"
        assert settings.collections["agenda"].table == "Agenda"
        assert settings.collections["minutes"].table == "Meeting Minutes"
        assert settings.collections["minutes"].view == "Published"
        assert settings.collections["minutes"].view_method == "get_minutes"

    def test_config_path_from_environment(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("port: 9090\n")

        settings = load_settings(environ={"LEDGER_SYNC_CONFIG": str(config_file)}, validate=False)

        assert settings.port == 9090

    def test_unknown_key_rejected(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("colour: blue\n")

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_settings(str(config_file), environ={}, validate=False)

    def test_non_mapping_rejected(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="must contain a mapping"):
            load_settings(str(config_file), environ={}, validate=False)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "absent.yaml"), environ={})

    def test_vault_secrets(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "vault:\n"
            "  enabled: true\n"
            "  url: http://vault:8200\n"
            "  path: sync\n"
        )

        with patch("ledger_sync.config.VaultClient") as mock_vault:
            vault = mock_vault.return_value.__enter__.return_value
            vault.get_mac_secrets.return_value = {
                "agenda": SECRET_ENV["AGENDA_MAC_SECRET_BASE64"],
                "alerts": SECRET_ENV["ALERTS_MAC_SECRET_BASE64"],
            }
            vault.get_store_credentials.return_value = {"airtable_token": "pat-vault"}

            settings = load_settings(str(config_file), environ={})

        mock_vault.assert_called_once_with(vault_url="http://vault:8200", mount_point="secret")
        vault.get_store_credentials.assert_called_once_with(path="sync")
        assert settings.airtable_token == "pat-vault"
        assert settings.mac_secrets()["agenda"] == b"agenda-secret"

    def test_vault_disabled_without_address(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("vault:\n  enabled: true\n")

        with patch("ledger_sync.config.VaultClient") as mock_vault:
            load_settings(str(config_file), environ={}, validate=False)

        mock_vault.assert_not_called()
