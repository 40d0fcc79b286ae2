import httpx
import pytest

from app.adgen.errors import (
    RETRY_INFO_TYPE,
    AllVariantsFailed,
    RateLimited,
    TransientNetwork,
    UpstreamRejected,
    decode_error_response,
    decode_transport_error,
    extract_retry_delay,
)


def retry_info(delay):
    return {"error": {"message": "quota", "details": [
        {"@type": "type.googleapis.com/google.rpc.QuotaFailure"},
        {"@type": RETRY_INFO_TYPE, "retryDelay": delay},
    ]}}


@pytest.mark.parametrize("delay, expected", [
    ("40s", 40),
    (12, 12),
    ({"seconds": "7"}, 7),
    ("0s", 0),
])
def test_retry_delay_from_retry_info(delay, expected):
    assert extract_retry_delay(retry_info(delay)) == expected


def test_retry_delay_from_message_rounds_up():
    payload = {"error": {"message": "Please retry in 3.2s."}}
    assert extract_retry_delay(payload) == 4


def test_retry_delay_absent():
    assert extract_retry_delay({"error": {"message": "Resource exhausted"}}) is None
    assert extract_retry_delay({}) is None


def test_decode_quota_response():
    error = decode_error_response(httpx.Response(429, json=retry_info("40s")))
    assert isinstance(error, RateLimited)
    assert error.retryable
    assert error.retry_after_seconds == 40


def test_decode_not_found_uses_default_message():
    error = decode_error_response(httpx.Response(404, text="not json"))
    assert isinstance(error, UpstreamRejected)
    assert not error.retryable
    assert error.http_status == 404
    assert "model not found" in str(error)


def test_decode_server_error_is_not_retried():
    error = decode_error_response(httpx.Response(500, json={"error": {"message": "internal"}}))
    assert isinstance(error, UpstreamRejected)
    assert error.http_status == 500


def test_decode_timeout():
    request = httpx.Request("POST", "https://example.test")
    error = decode_transport_error(httpx.ConnectTimeout("slow", request=request))
    assert isinstance(error, TransientNetwork)
    assert "timed out" in str(error)


def test_all_variants_failed_lists_every_reason():
    error = AllVariantsFailed(["variant 1: blocked", "variant 2: quota"])
    assert "variant 1: blocked" in str(error)
    assert "variant 2: quota" in str(error)
    assert error.per_variant_reasons == ["variant 1: blocked", "variant 2: quota"]
