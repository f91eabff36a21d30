"""Keep the Hetzner API token and other registered secrets out of log output."""

import logging
import os
import re

TOKEN_ENV_VAR = "HETZNER_API_TOKEN"
MASK = "***"

_MIN_SECRET_LENGTH = 8  # shorter values match too much ordinary text

_registered: set[str] = set()

# Lazy-initialized; rebuilt after register_secret()
_mask_re: re.Pattern | None = None


def register_secret(value: str | None) -> None:
    """Mask *value* in every log record from now on."""
    global _mask_re
    if value and len(value) >= _MIN_SECRET_LENGTH and value not in _registered:
        _registered.add(value)
        _mask_re = None


def _secret_pattern() -> re.Pattern | None:
    global _mask_re
    if _mask_re is None:
        secrets = set(_registered)
        env_token = os.environ.get(TOKEN_ENV_VAR, "")
        if len(env_token) >= _MIN_SECRET_LENGTH:
            secrets.add(env_token)
        if not secrets:
            return None
        # Longest first, so a secret containing another is masked whole.
        _mask_re = re.compile("|".join(re.escape(s) for s in sorted(secrets, key=len, reverse=True)))
    return _mask_re


class SecretRedactingFilter(logging.Filter):
    """Mask secrets in the message and its %-style args."""

    def filter(self, record: logging.LogRecord) -> bool:
        pattern = _secret_pattern()
        if pattern is None:
            return True

        def scrub(value):
            return pattern.sub(MASK, value) if isinstance(value, str) else value

        record.msg = pattern.sub(MASK, str(record.msg))
        if isinstance(record.args, dict):
            record.args = {k: scrub(v) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(scrub(a) for a in record.args)
        return True
