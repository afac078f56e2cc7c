"""
Log output never carries Google OAuth secrets.
"""

import logging

from telecare.utils.logger import RedactSecretsFilter, configure_logging, get_logger, redact


class TestRedaction:

    def test_bearer_and_token_fields_masked(self):
        text = redact(
            'Authorization: Bearer ya29.a0AfH6SM and {"access_token": "ya29.abc", "refresh_token": "1//0gXyz"}'
        )

        assert "ya29" not in text
        assert "1//0gXyz" not in text
        assert "Bearer ***" in text
        assert '"refresh_token": "***"' in text

    def test_callback_code_masked(self):
        assert redact("GET /meetings/google/callback?code=4/0AbCd&state=s1") == (
            "GET /meetings/google/callback?code=***&state=s1"
        )

    def test_plain_messages_untouched(self):
        assert redact("Meeting abc-defg-hij is now active") == "Meeting abc-defg-hij is now active"

    def test_filter_rewrites_formatted_record(self):
        record = logging.LogRecord(
            "telecare_api.google", logging.ERROR, __file__, 1, "refresh failed: %s", ("refresh_token=1//secret",), None
        )

        assert RedactSecretsFilter().filter(record) is True
        assert record.getMessage() == "refresh failed: refresh_token=***"


class TestConfigureLogging:

    def test_handlers_replaced_not_duplicated(self, tmp_path):
        configure_logging(tmp_path)
        root = configure_logging(tmp_path)
        try:
            assert len(root.handlers) == 3
            assert all(any(isinstance(f, RedactSecretsFilter) for f in h.filters) for h in root.handlers)

            get_logger("tokens").error("Bearer ya29.leaked")
            for h in root.handlers:
                h.flush()
            errors = (tmp_path / "errors.log").read_text()
        finally:
            configure_logging()

        assert "Bearer ***" in errors
        assert "ya29.leaked" not in errors
