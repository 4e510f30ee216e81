import pytest
from pydantic import ValidationError

from browser.context_codec import BrowserState
from core.config import (
    AdapterVariant,
    BrokerSettings,
    SessionConfig,
    StealthConfig,
    Viewport,
)


@pytest.fixture
def mock_env(monkeypatch):
    monkeypatch.setenv("LT_USERNAME", "env_user")
    monkeypatch.setenv("LT_ACCESS_KEY", "env_key")
    monkeypatch.setenv("PROFILES_DIR", "/var/profiles")
    monkeypatch.setenv("TIMEOUT", "60000")


def test_broker_settings_from_env(mock_env):
    settings = BrokerSettings(_env_file=None)
    assert settings.lt_username == "env_user"
    assert settings.lt_access_key == "env_key"
    assert settings.profiles_dir == "/var/profiles"
    assert settings.timeout == 60000


class TestBrokerSettingsDefaults:
    """Defaults used when nothing is configured."""

    def test_default_values(self, monkeypatch):
        for name in ("LT_USERNAME", "LT_ACCESS_KEY", "PROFILES_DIR", "TIMEOUT", "HEADLESS"):
            monkeypatch.delenv(name, raising=False)
        settings = BrokerSettings(_env_file=None)
        assert settings.log_level == "INFO"
        assert settings.headless is True
        assert settings.timeout == 300000
        assert settings.vendor_options_key == "LT:Options"
        assert settings.hub_url == "https://hub.lambdatest.com/wd/hub"
        assert settings.cdp_host == "cdp.lambdatest.com"
        assert settings.profiles_dir == ".profiles"
        assert settings.lt_username is None


class TestAdapterVariant:

    @pytest.mark.parametrize("name,variant", [
        ("cdp", AdapterVariant.CDP),
        ("puppeteer", AdapterVariant.CDP),
        ("Playwright", AdapterVariant.PLAYWRIGHT),
        ("webdriver", AdapterVariant.WEBDRIVER),
        ("SELENIUM", AdapterVariant.WEBDRIVER),
    ])
    def test_names_and_aliases(self, name, variant):
        assert AdapterVariant(name) is variant

    def test_unknown(self):
        with pytest.raises(ValueError):
            AdapterVariant("telnet")


class TestSessionConfig:

    def test_defaults(self):
        config = SessionConfig()
        assert config.adapter is AdapterVariant.CDP
        assert config.dimensions == Viewport(width=1920, height=1080)
        assert config.stealth_config is None
        assert config.persist_profile is True
        assert config.headless is None
        assert config.extension_urls == []

    def test_camel_case_keys(self):
        config = SessionConfig.model_validate({
            "adapter": "selenium",
            "sessionId": "abc",
            "proxyUrl": "http://proxy:8080",
            "stealthConfig": {"humanizeInteractions": True, "randomizeViewport": False},
            "profileId": "shop",
            "persistProfile": False,
            "sessionContext": {"cookies": [{"name": "a", "value": "1"}]},
        })
        assert config.adapter is AdapterVariant.WEBDRIVER
        assert config.session_id == "abc"
        assert config.effective_proxy == "http://proxy:8080"
        assert config.stealth_config.humanize_interactions is True
        assert config.stealth_config.randomize_viewport is False
        assert config.stealth_config.randomize_user_agent is True
        assert config.persist_profile is False
        assert isinstance(config.session_context, BrowserState)

    def test_proxy_wins_over_proxy_url(self):
        config = SessionConfig(proxy="http://a:1", proxy_url="http://b:2")
        assert config.effective_proxy == "http://a:1"

    def test_stealth_config_is_frozen(self):
        stealth = StealthConfig()
        with pytest.raises(ValidationError):
            stealth.humanize_interactions = True

    def test_unknown_adapter_rejected(self):
        with pytest.raises(ValidationError):
            SessionConfig(adapter="telnet")
