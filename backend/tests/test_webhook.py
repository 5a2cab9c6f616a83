"""Tests for webhook target checks."""

import pytest

from tasks.implementations.webhook_task import validate_url_safety

pytestmark = pytest.mark.unit


@pytest.mark.parametrize("url", [
    "https://hooks.example.com/doula",
    "http://crm.example.org:8080/inbound",
    "https://93.184.216.34/hook",
])
def test_public_urls_allowed(url):
    validate_url_safety(url)


@pytest.mark.parametrize("url,message", [
    ("ftp://example.com/file", "Unsupported scheme"),
    ("hooks.example.com/doula", "Unsupported scheme"),
    ("https:///path-only", "valid hostname"),
    ("http://localhost:8000/hook", "localhost"),
    ("http://127.0.0.1/hook", "private IP"),
    ("http://10.1.2.3/hook", "private IP"),
    ("http://192.168.1.20/hook", "private IP"),
    ("http://169.254.169.254/latest/meta-data", "private IP"),
    ("http://[::1]/hook", "private IP"),
    ("http://db.example.com:5432/", "internal port 5432"),
    ("http://cache.example.com:6379/", "internal port 6379"),
    ("http://example.com:99999/", "Invalid port"),
])
def test_unsafe_urls_rejected(url, message):
    with pytest.raises(ValueError, match=message):
        validate_url_safety(url)
