"""Tests for hetzbox.redact: masking secrets in log records."""

import logging

import pytest

import hetzbox.redact as redact_module
from hetzbox.redact import SecretRedactingFilter, register_secret


@pytest.fixture(autouse=True)
def _reset_cache(monkeypatch):
    """Reset the module-level caches so env changes take effect."""
    monkeypatch.setattr(redact_module, "_mask_re", None)
    monkeypatch.setattr(redact_module, "_registered", set())


def _record(msg, args=None):
    return logging.LogRecord(name="test", level=logging.INFO, pathname="", lineno=0, msg=msg, args=args, exc_info=None)


def _filtered(msg, args=None):
    record = _record(msg, args)
    assert SecretRedactingFilter().filter(record) is True
    return record


# ── Env token ───────────────────────────────────────────────────


def test_env_token_masked(monkeypatch):
    monkeypatch.setenv("HETZNER_API_TOKEN", "hc_SuperSecretToken123")

    assert _filtered("Calling API with token hc_SuperSecretToken123 now").msg == "Calling API with token *** now"


def test_short_env_token_left_alone(monkeypatch):
    monkeypatch.setenv("HETZNER_API_TOKEN", "short")

    assert _filtered("Token is short").msg == "Token is short"


def test_no_secrets_leaves_record_untouched(monkeypatch):
    monkeypatch.delenv("HETZNER_API_TOKEN", raising=False)

    record = _filtered("Port %d open", (22,))

    assert record.msg == "Port %d open"
    assert record.args == (22,)


# ── register_secret ─────────────────────────────────────────────


def test_register_secret_masks_runtime_values(monkeypatch):
    monkeypatch.delenv("HETZNER_API_TOKEN", raising=False)
    assert _filtered("token=from_config_file_token").msg == "token=from_config_file_token"

    register_secret("from_config_file_token")

    assert _filtered("token=from_config_file_token").msg == "token=***"


def test_register_secret_ignores_short_and_empty():
    register_secret(None)
    register_secret("")
    register_secret("abc")

    assert redact_module._registered == set()


def test_longer_secret_masked_whole(monkeypatch):
    monkeypatch.setenv("HETZNER_API_TOKEN", "hc_TokenAAAA")
    register_secret("hc_TokenAAAA_extended")

    assert _filtered("a=hc_TokenAAAA_extended b=hc_TokenAAAA").msg == "a=*** b=***"


# ── Record parts ────────────────────────────────────────────────


def test_tuple_args_masked(monkeypatch):
    monkeypatch.setenv("HETZNER_API_TOKEN", "hc_ArgsTestToken88")

    record = _filtered("Token: %s (%d)", ("hc_ArgsTestToken88", 3))

    assert record.args == ("***", 3)
    assert record.getMessage() == "Token: *** (3)"


def test_dict_args_masked(monkeypatch):
    monkeypatch.setenv("HETZNER_API_TOKEN", "hc_DictTestToken77")
    record = _record("Token: %(token)s")
    record.args = {"token": "hc_DictTestToken77", "n": 1}

    SecretRedactingFilter().filter(record)

    assert record.args == {"token": "***", "n": 1}


def test_filter_on_logger_masks_caplog_output(monkeypatch, caplog):
    monkeypatch.setenv("HETZNER_API_TOKEN", "hc_CaplogToken55")
    logger = logging.getLogger("hetzbox.test_redact")
    redacting = SecretRedactingFilter()
    logger.addFilter(redacting)

    try:
        with caplog.at_level(logging.INFO, logger="hetzbox.test_redact"):
            logger.info("token is hc_CaplogToken55")
    finally:
        logger.removeFilter(redacting)

    assert "hc_CaplogToken55" not in caplog.text
    assert "token is ***" in caplog.text
