"""
Tests for LedgerConfig loading and validation.
"""

import pytest
import yaml

from gst_kernel.config import LedgerConfig, load_config, load_yaml_file


class TestLedgerConfig:

    def test_defaults(self):
        config = LedgerConfig()
        assert config.default_currency == "BTN"
        assert config.invoice_prefix == "INV"
        assert config.retry_attempts == 3
        assert config.filing_due_day == 20

    @pytest.mark.parametrize(
        "overrides",
        [
            {"retry_attempts": 0},
            {"retry_base_delay": 2.0, "retry_max_delay": 1.0},
            {"default_currency": "XXY"},
            {"number_padding": 0},
            {"filing_due_day": 32},
            {"log_level": "CHATTY"},
            {"database_url": ""},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            LedgerConfig(**overrides)

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="retry_atempts"):
            LedgerConfig.from_dict({"retry_atempts": 5})

    def test_round_trip_dict(self):
        config = LedgerConfig(retry_attempts=7, default_currency="INR")
        assert LedgerConfig.from_dict(config.to_dict()) == config


class TestLoadConfig:

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text(yaml.safe_dump({"retry_attempts": 5, "invoice_prefix": "TAX"}))
        config = load_config(path, environ={})
        assert config.retry_attempts == 5
        assert config.invoice_prefix == "TAX"

    def test_ledger_section_unwrapped(self, tmp_path):
        path = tmp_path / "app.yaml"
        path.write_text(yaml.safe_dump({"ledger": {"filing_due_day": 15}}))
        assert load_yaml_file(path) == {"filing_due_day": 15}
        assert load_config(path, environ={}).filing_due_day == 15

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="expected a mapping"):
            load_yaml_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml", environ={})

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text(yaml.safe_dump({"database_url": "sqlite:///file.db"}))
        config = load_config(
            path,
            environ={
                "GST_LEDGER_DATABASE_URL": "postgresql://localhost/gst",
                "GST_LEDGER_LOG_LEVEL": "DEBUG",
            },
        )
        assert config.database_url == "postgresql://localhost/gst"
        assert config.log_level == "DEBUG"

    def test_database_url_fallback(self):
        config = load_config(environ={"DATABASE_URL": "sqlite:///fallback.db"})
        assert config.database_url == "sqlite:///fallback.db"

    def test_defaults_without_file_or_env(self):
        assert load_config(environ={}) == LedgerConfig()
