"""
Redaction tests: secrets must never reach log output.
"""

from __future__ import annotations

import logging

from watts_home import log_utils


def test_sanitize_text_scrubs_json_and_form_secrets() -> None:
    text = (
        '{"access_token":"eyJhbGciOi.secret","refresh_token":"rt-secret"} '
        "grant_type=authorization_code&code=XYZ123&code_verifier=verif"
    )
    scrubbed = log_utils.sanitize_text(text)

    for secret in ("eyJhbGciOi.secret", "rt-secret", "XYZ123", "verif"):
        assert secret not in scrubbed
    assert "grant_type=authorization_code" in scrubbed


def test_sanitize_mapping_redacts_sensitive_headers() -> None:
    headers = {"x-csrf-token": "abc", "Cookie": "a=1", "Content-Type": "application/json"}

    assert log_utils.sanitize_mapping(headers) == {
        "x-csrf-token": "<redacted>",
        "Cookie": "<redacted>",
        "Content-Type": "application/json",
    }


def test_sanitize_obj_is_deep() -> None:
    payload = {"status": "200", "nested": [{"password": "pw", "keep": 1}]}

    assert log_utils.sanitize_obj(payload) == {"status": "200", "nested": [{"password": "<redacted>", "keep": 1}]}


def test_redact_keeps_short_prefix_and_suffix() -> None:
    assert log_utils.redact("user@example.com") == "use...com"
    assert log_utils.redact("short") == "<redacted>"
    assert log_utils.redact(None) == "<none>"


def test_configure_logging_adds_run_id() -> None:
    log = log_utils.configure_logging(run_id="run123", level="DEBUG")
    record = logging.getLogger("watts_home").makeRecord("watts_home", logging.INFO, __file__, 1, "msg", (), None)

    assert log.logger.name == "watts_home"
    assert getattr(record, "run_id") == "run123"
