"""Request context middleware and log masking."""
import json
import logging

from starlette.requests import Request

from gallery_admin.logging_config import (
    JSONFormatter, bind_request_context, current_request_context, mask_pii, reset_request_context,
)
from gallery_admin.middleware.metrics import _normalize_path
from gallery_admin.middleware.request_logging import get_client_ip, parse_ip_list


def _request(client_host: str, headers: dict) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": (client_host, 5000),
    }
    return Request(scope)


def test_forwarded_header_trusted_only_from_proxy():
    proxies = parse_ip_list("10.0.0.0/8, 127.0.0.1")
    headers = {"X-Forwarded-For": "198.51.100.4, 10.0.0.2"}
    assert get_client_ip(_request("10.1.2.3", headers), proxies) == "198.51.100.4"
    assert get_client_ip(_request("203.0.113.9", headers), proxies) == "203.0.113.9"


def test_real_ip_header_and_invalid_entries():
    proxies = parse_ip_list("127.0.0.1,not-an-ip")
    assert len(proxies) == 1
    assert get_client_ip(_request("127.0.0.1", {"X-Real-IP": "192.0.2.1"}), proxies) == "192.0.2.1"


def test_mask_pii():
    masked = mask_pii('admin@gallery.test sent token="abc123" with Bearer eyJhbGciOi.x.y')
    assert "admin@gallery.test" not in masked
    assert "abc123" not in masked
    assert "eyJhbGciOi" not in masked


def test_metrics_paths_collapse_ids():
    path = "/api/v1/feature-flags/6f1c2a9e-7d3b-4c55-9a1e-0d2f3b4c5d6e/history"
    assert _normalize_path(path) == "/api/v1/feature-flags/{id}/history"


def test_json_formatter_carries_request_and_flag_fields():
    record = logging.LogRecord(
        "gallery_admin.flags.store", logging.INFO, __file__, 1,
        "Flag %s toggled by %s", ("turbo_upload", "ops@gallery.test"), None,
    )
    record.flag_key = "turbo_upload"
    tokens = bind_request_context("abc123def456", "198.51.100.4", "curl/8")
    try:
        entry = json.loads(JSONFormatter().format(record))
    finally:
        reset_request_context(tokens)

    assert entry["request_id"] == "abc123def456"
    assert entry["client_ip"] == "198.51.100.4"
    assert entry["flag_key"] == "turbo_upload"
    assert "ops@gallery.test" not in entry["message"]
    assert "principal" not in entry
    assert current_request_context().request_id is None
