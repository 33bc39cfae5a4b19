"""Tests for log secret redaction and logging config."""

from __future__ import annotations

import io
import logging
import sys

import httpx

from lta_datamall_mcp.display.logging_config import SecretRedactionFilter, build_log_config
from lta_datamall_mcp.errors import PersistenceUnavailableError


def _record(msg: str, *args: object) -> logging.LogRecord:
    return logging.LogRecord("t", logging.INFO, __file__, 1, msg, args or None, None)


class TestSecretRedactionFilter:
    def test_registered_secret_in_message_and_args(self) -> None:
        flt = SecretRedactionFilter(["KEY-abcdef"])
        rec = _record("using KEY-abcdef for %s", "KEY-abcdef")
        assert flt.filter(rec) is True
        assert "KEY-abcdef" not in rec.getMessage()
        assert "***REDACTED***" in rec.getMessage()

    def test_query_parameters_scrubbed_without_registration(self) -> None:
        flt = SecretRedactionFilter()
        rec = _record('"POST /mcp?apiKey=zzz123&x=1 HTTP/1.1" 200')
        flt.filter(rec)
        assert "zzz123" not in rec.getMessage()
        assert "x=1" in rec.getMessage()

        rec = _record("GET %s", "https://db.example/analytics.json?auth=tok999")
        flt.filter(rec)
        assert "tok999" not in rec.getMessage()

    def test_short_values_not_registered(self) -> None:
        flt = SecretRedactionFilter(["ab", ""])
        rec = _record("ab cd")
        flt.filter(rec)
        assert rec.getMessage() == "ab cd"

    def test_longest_secret_masked_whole(self) -> None:
        flt = SecretRedactionFilter(["abcd", "abcdefgh"])
        rec = _record("k=abcdefgh")
        flt.filter(rec)
        assert rec.getMessage() == "k=***REDACTED***"

    def test_dict_args(self) -> None:
        flt = SecretRedactionFilter(["secret-value"])
        rec = logging.LogRecord("t", logging.INFO, __file__, 1, "%(k)s", None, None)
        rec.args = {"k": "secret-value", "n": 3}
        flt.filter(rec)
        assert rec.getMessage() == "***REDACTED***"

    def test_exception_arg_with_query_token(self) -> None:
        flt = SecretRedactionFilter()
        err = PersistenceUnavailableError(
            "remote",
            "Client error '401 Unauthorized' for url 'https://db.test/a.json?auth=SUPERSECRETTOKEN'",
        )
        rec = _record("%s; trying next backend.", err)
        flt.filter(rec)
        assert "SUPERSECRETTOKEN" not in rec.getMessage()
        assert "auth=***REDACTED***" in rec.getMessage()

    def test_traceback_text_scrubbed(self) -> None:
        flt = SecretRedactionFilter(["KEY-abcdef"])
        try:
            raise RuntimeError("bad key KEY-abcdef")
        except RuntimeError:
            rec = logging.LogRecord("t", logging.ERROR, __file__, 1, "boom", None, sys.exc_info())
        flt.filter(rec)
        assert rec.exc_text is not None
        assert "KEY-abcdef" not in rec.exc_text
        assert "KEY-abcdef" not in logging.Formatter().format(rec)

    def test_handler_output_scrubbed(self) -> None:
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.addFilter(SecretRedactionFilter())
        log = logging.getLogger("lta_datamall_mcp.tests.redaction")
        log.addHandler(handler)
        log.propagate = False
        try:
            log.warning("%s", httpx.URL("https://db.test/a.json?auth=tok-12345"))
        finally:
            log.removeHandler(handler)
        assert "tok-12345" not in stream.getvalue()


class TestBuildLogConfig:
    def test_debug_opens_noisy_loggers(self) -> None:
        cfg = build_log_config("DEBUG", "x.log")
        assert cfg["loggers"]["httpx"]["level"] == "INFO"
        assert cfg["loggers"]["uvicorn.access"]["level"] == "INFO"
        assert cfg["root"]["level"] == "DEBUG"

    def test_info_pins_noisy_loggers(self) -> None:
        cfg = build_log_config("INFO", "x.log")
        assert cfg["loggers"]["httpx"]["level"] == "WARNING"
        assert cfg["loggers"]["lta_datamall_mcp"]["level"] == "INFO"
        assert cfg["root"]["level"] == "WARNING"
        assert cfg["handlers"]["file_handler"]["filename"] == "x.log"
        assert cfg["handlers"]["console_handler"]["stream"] == "ext://sys.stderr"
