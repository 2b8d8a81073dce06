import pytest

from quotabar.cli import parse_args
from quotabar.config import Config


class TestConfigFromEnv:
    def test_defaults(self) -> "None":
        config = Config.from_env({})
        assert config.providers == []
        assert config.refresh_interval == 300.0
        assert config.fetch_timeout == 30.0
        assert config.http_timeout == 10.0
        assert config.secret_backend == "memory"
        assert config.debug_capture_dir == ""
        assert config.api_keys == {}
        assert config.import_credentials is True

    def test_reads_env_vars(self) -> "None":
        config = Config.from_env(
            {
                "QUOTABAR_PROVIDERS": "claude, Zai,,",
                "QUOTABAR_REFRESH_INTERVAL": "60",
                "QUOTABAR_RETRY_ATTEMPTS": "5",
                "QUOTABAR_SECRET_BACKEND": "keychain",
                "QUOTABAR_ZAI_API_KEY": "zai-key",
                "QUOTABAR_OPENAI_API_KEY": "sk-test",
            }
        )
        assert config.providers == ["claude", "zai"]
        assert config.refresh_interval == 60.0
        assert config.retry_attempts == 5
        assert config.secret_backend == "keychain"
        assert config.api_keys == {"zai": "zai-key", "openai": "sk-test"}

    def test_api_keys_not_in_repr(self) -> "None":
        config = Config.from_env({"QUOTABAR_ZAI_API_KEY": "zai-key"})
        assert "zai-key" not in repr(config)

    def test_credential_import_can_be_disabled(self) -> "None":
        assert Config.from_env({"QUOTABAR_IMPORT_CREDENTIALS": "false"}).import_credentials is False
        assert Config.from_env({"QUOTABAR_IMPORT_CREDENTIALS": "1"}).import_credentials is True

    def test_invalid_number(self) -> "None":
        with pytest.raises(ValueError):
            Config.from_env({"QUOTABAR_FETCH_TIMEOUT": "soon"})

    def test_invalid_backend(self) -> "None":
        with pytest.raises(ValueError):
            Config.from_env({"QUOTABAR_SECRET_BACKEND": "vault"})

    def test_policy_helpers(self) -> "None":
        config = Config(retry_attempts=4, rate_capacity=2, rate_refill=0.5)
        assert config.retry_policy().max_attempts == 4
        assert config.rate_limit().capacity == 2
        assert config.rate_limit().refill_per_second == 0.5


class TestParseArgs:
    def test_flags_override_env(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("QUOTABAR_PROVIDERS", "claude")
        config = parse_args(
            [
                "--providers",
                "cursor,kiro",
                "--watch",
                "--watch.interval",
                "15",
                "--fetch.timeout",
                "5",
                "--log.level",
                "debug",
            ]
        )
        assert config.providers == ["cursor", "kiro"]
        assert config.watch is True
        assert config.refresh_interval == 15.0
        assert config.fetch_timeout == 5.0
        assert config.log_level == "debug"

    def test_env_used_without_flags(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("QUOTABAR_PROVIDERS", "claude")
        config = parse_args([])
        assert config.providers == ["claude"]
        assert config.watch is False
        assert config.listen_address == ""

    def test_rejects_non_positive_interval(self) -> "None":
        with pytest.raises(SystemExit):
            parse_args(["--watch.interval", "0"])

    def test_skip_credential_import(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.delenv("QUOTABAR_IMPORT_CREDENTIALS", raising=False)
        assert parse_args([]).import_credentials is True
        assert parse_args(["--credentials.skip-import"]).import_credentials is False
