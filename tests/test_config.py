import pytest

from chatline.config import load_settings
from chatline.errors import ChatlineError


def test_defaults():
    settings = load_settings(env={})
    assert settings.port == 3000
    assert settings.ring_timeout is None
    assert settings.cors_allowed_origins() == "*"


def test_environment_values():
    settings = load_settings(env={
        "CHATLINE_PORT": "4000",
        "CHATLINE_JWT_SECRET": "s3cret",
        "CHATLINE_CORS_ORIGINS": "http://a.test, http://b.test",
        "CHATLINE_RING_TIMEOUT": "30",
        "CHATLINE_LOG_LEVEL": "debug",
    })
    assert settings.port == 4000
    assert settings.jwt_secret == "s3cret"
    assert settings.cors_allowed_origins() == ["http://a.test", "http://b.test"]
    assert settings.ring_timeout == 30.0
    assert settings.log_level == "DEBUG"


def test_overrides_win_unless_none():
    settings = load_settings(env={"CHATLINE_PORT": "4000", "CHATLINE_HOST": "127.0.0.1"}, port=5000, host=None)
    assert settings.port == 5000
    assert settings.host == "127.0.0.1"


def test_invalid_values_raise_config_error():
    with pytest.raises(ChatlineError) as exc_info:
        load_settings(env={"CHATLINE_PORT": "not-a-port"})
    assert exc_info.value.code == "config_error"

    with pytest.raises(ChatlineError):
        load_settings(env={"CHATLINE_RING_TIMEOUT": "0"})
