"""Tests for secret redaction in logs."""

import logging

from app.core.logging import JSONFormatter, SecretRedactingFilter, mask_secret, redact


class TestRedact:
    def test_bearer_header(self):
        text = redact("headers={'Authorization': 'Bearer sk-abcdefghijklmnop'}")
        assert "sk-abcdefghijklmnop" not in text
        assert "Authorization" in text

    def test_x_api_key_header(self):
        text = redact('{"x-api-key": "sk-ant-api03-secretsecret"}')
        assert "secretsecret" not in text

    def test_query_key_param(self):
        text = redact("GET https://generativelanguage.googleapis.com/v1beta/models?key=AIzaSyD-secret123")
        assert "AIzaSyD-secret123" not in text
        assert "?key=" in text

    def test_vault_envelope(self):
        assert "gAAAAAB" not in redact("stored=enc:v1:gAAAAABxyz123")

    def test_vendor_key_shapes(self):
        for key in ("sk-proj-1234567890abcdef", "gsk_1234567890abcdef", "xai-1234567890abcdef", "hf_1234567890abcdef"):
            assert key not in redact(f"using {key} now")

    def test_plain_text_untouched(self):
        assert redact("Hello, how can I help?") == "Hello, how can I help?"


class TestMaskSecret:
    def test_long_secret(self):
        assert mask_secret("sk-1234567890abcd") == "sk-1...abcd"

    def test_short_secret(self):
        assert mask_secret("abcd") == "****"

    def test_empty(self):
        assert mask_secret("") == ""


class TestSecretRedactingFilter:
    def _record(self, msg, *args):
        return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)

    def test_filter_rewrites_args(self):
        record = self._record("calling with key %s", "sk-abcdefghijklmnop")
        assert SecretRedactingFilter().filter(record) is True
        assert "sk-abcdefghijklmnop" not in record.getMessage()
        assert record.args is None

    def test_filter_keeps_clean_records(self):
        record = self._record("turns=%d", 3)
        SecretRedactingFilter().filter(record)
        assert record.getMessage() == "turns=3"
        assert record.args == (3,)

    def test_json_formatter(self):
        record = self._record("provider %s ok", "openai")
        output = JSONFormatter().format(record)
        assert '"message": "provider openai ok"' in output
        assert '"level": "INFO"' in output
