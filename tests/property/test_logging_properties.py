"""Property tests for structured logging.

# Feature: arena-bridge, Property 12: Structured log format
# Feature: arena-bridge, Property 13: No credentials in logs
"""

from __future__ import annotations

import json
import logging

from hypothesis import given, settings, strategies as st

from arenabridge.logging_config import JsonFormatter, redact_url, request_id_var


# --- Strategies ---

request_ids = st.uuids().map(str)
messages = st.text(min_size=1, max_size=100, alphabet="abcdefghijklmnopqrstuvwxyz0123456789 ._-/")
levels = st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
states = st.sampled_from(["acquiring", "navigating", "captcha_check", "submitting", "awaiting_response"])
profiles = st.sampled_from(["Chrome Mac", "Chrome Windows", "Safari Mac", "Edge Windows"])
words = st.text(min_size=3, max_size=16, alphabet="abcdefghijklmnopqrstuvwxyz0123456789")
hosts = st.tuples(*[st.integers(min_value=1, max_value=254)] * 4).map(lambda parts: ".".join(map(str, parts)))
ports = st.integers(min_value=1, max_value=65535)
schemes = st.sampled_from(["http", "https", "socks4", "socks5"])


def _make_record(
    message: str,
    level: str = "INFO",
    request_id: str | None = None,
    **extra: object,
) -> logging.LogRecord:
    """Create a LogRecord with optional extra attributes."""
    record = logging.LogRecord(
        name="test",
        level=getattr(logging, level),
        pathname="test.py",
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    if request_id is not None:
        record.request_id = request_id  # type: ignore[attr-defined]
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# --- Property 12: Structured log format ---

@settings(max_examples=100)
@given(message=messages, level=levels, request_id=request_ids)
def test_structured_log_format_basic(message: str, level: str, request_id: str) -> None:
    """Every entry is JSON with request_id, level and timestamp."""
    # Feature: arena-bridge, Property 12: Structured log format

    parsed = json.loads(JsonFormatter().format(_make_record(message, level=level, request_id=request_id)))

    assert "timestamp" in parsed
    assert parsed["level"] == level
    assert parsed["request_id"] == request_id
    assert parsed["message"] == message


@settings(max_examples=100)
@given(
    message=messages,
    request_id=request_ids,
    state=states,
    profile=profiles,
    attempt=st.integers(min_value=1, max_value=2),
)
def test_progress_entries_carry_session_fields(
    message: str,
    request_id: str,
    state: str,
    profile: str,
    attempt: int,
) -> None:
    """Progress entries keep session_state, profile and attempt."""
    # Feature: arena-bridge, Property 12: Structured log format

    record = _make_record(
        message,
        request_id=request_id,
        session_state=state,
        profile=profile,
        attempt=attempt,
    )
    parsed = json.loads(JsonFormatter().format(record))

    assert parsed["session_state"] == state
    assert parsed["profile"] == profile
    assert parsed["attempt"] == attempt


@settings(max_examples=100)
@given(
    message=messages,
    duration_ms=st.integers(min_value=0, max_value=600_000),
    error_reason=messages,
)
def test_failure_entries_carry_duration_and_reason(
    message: str,
    duration_ms: int,
    error_reason: str,
) -> None:
    """Failure entries keep duration_ms and error_reason."""
    # Feature: arena-bridge, Property 12: Structured log format

    record = _make_record(message, level="ERROR", duration_ms=duration_ms, error_reason=error_reason)
    parsed = json.loads(JsonFormatter().format(record))

    assert parsed["duration_ms"] == duration_ms
    assert parsed["error_reason"] == error_reason


# --- Property 13: No credentials in logs ---

@settings(max_examples=100)
@given(
    secret_value=st.text(min_size=8, max_size=32, alphabet="abcdefghijklmnopqrstuvwxyz0123456789"),
    prefix=st.sampled_from([
        "client_key=",
        "api_key=",
        "secret=",
        "password=",
        "token=",
        "credential=",
        "authorization: ",
    ]),
)
def test_no_credentials_in_logs(secret_value: str, prefix: str) -> None:
    """Key/value style secrets are redacted from the message."""
    # Feature: arena-bridge, Property 13: No credentials in logs

    record = _make_record(f"Solver call failed with {prefix}{secret_value} attached", level="ERROR")
    parsed = json.loads(JsonFormatter().format(record))

    assert secret_value not in parsed["message"]


@settings(max_examples=100)
@given(scheme=schemes, user=words, password=words, host=hosts, port=ports)
def test_proxy_passwords_never_logged(scheme: str, user: str, password: str, host: str, port: int) -> None:
    """Proxy URL credentials are masked in messages and context fields."""
    # Feature: arena-bridge, Property 13: No credentials in logs

    url = f"{scheme}://{user}:{password}@{host}:{port}"
    record = _make_record(f"Claimed proxy {url}", proxy_used=url, error_reason=f"connect {url} refused")
    output = JsonFormatter().format(record)
    parsed = json.loads(output)

    assert f"{user}:{password}@" not in output
    assert parsed["proxy_used"] == f"{scheme}://****:****@{host}:{port}"
    assert redact_url(url) == parsed["proxy_used"]


@settings(max_examples=100)
@given(message=messages, request_id=request_ids)
def test_request_id_taken_from_context(message: str, request_id: str) -> None:
    """Entries written while a request is bound carry its id without ``extra``."""
    # Feature: arena-bridge, Property 12: Structured log format

    token = request_id_var.set(request_id)
    try:
        parsed = json.loads(JsonFormatter().format(_make_record(message)))
    finally:
        request_id_var.reset(token)

    assert parsed["request_id"] == request_id
    assert json.loads(JsonFormatter().format(_make_record(message)))["request_id"] is None
