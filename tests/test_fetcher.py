"""Tests for the SSRF-protected fetcher."""

import socket
import threading
from unittest.mock import Mock, patch

import pytest
import requests

from apps.extractor.fetcher import DNS_POOL_WORKERS, SafeFetcher, is_blocked_address
from utils.errors import ExternalServiceError, FetchTimeoutError, SSRFError

PUBLIC_IP = "93.184.216.34"


def _response(status=200, body=b"<html><body><p>Hello</p></body></html>", headers=None,
              redirect_to=None):
    response = Mock()
    response.status_code = status
    response.reason = "OK" if status == 200 else "Not Found"
    response.ok = status < 400
    response.is_redirect = redirect_to is not None
    response.headers = dict(headers or {"content-type": "text/html; charset=utf-8"})
    if redirect_to is not None:
        response.headers["location"] = redirect_to
    response.encoding = "utf-8"
    response.iter_content.return_value = [body]
    return response


def _fetcher(session, resolver=None, **kwargs):
    return SafeFetcher(
        user_agent="test-agent",
        resolver=resolver or (lambda host, port: [PUBLIC_IP]),
        session=session,
        **kwargs,
    )


class TestIsBlockedAddress:
    """Tests for the address blocklist."""

    @pytest.mark.parametrize(
        "address",
        [
            "127.0.0.1",
            "10.1.2.3",
            "172.16.0.1",
            "192.168.1.1",
            "169.254.169.254",
            "100.64.0.1",
            "0.0.0.0",
            "224.0.0.1",
            "::1",
            "fe80::1",
            "fd00::1",
            "::ffff:127.0.0.1",
            "::ffff:169.254.169.254",
            "not-an-ip",
        ],
    )
    def test_blocked(self, address):
        assert is_blocked_address(address)

    @pytest.mark.parametrize("address", [PUBLIC_IP, "8.8.8.8", "2606:4700:4700::1111"])
    def test_public(self, address):
        assert not is_blocked_address(address)


class TestValidateUrl:
    """Tests for per-hop URL validation."""

    def test_metadata_address_rejected_before_any_request(self):
        session = Mock()
        fetcher = _fetcher(session)

        with pytest.raises(SSRFError) as exc_info:
            fetcher.fetch("http://169.254.169.254/latest/meta-data/")

        assert str(exc_info.value).startswith("SSRF protection")
        session.get.assert_not_called()

    def test_hostname_resolving_to_private_rejected(self):
        session = Mock()
        fetcher = _fetcher(session, resolver=lambda host, port: [PUBLIC_IP, "10.0.0.5"])

        with pytest.raises(SSRFError):
            fetcher.fetch("https://internal.example.com/")

        session.get.assert_not_called()

    @pytest.mark.parametrize(
        "url", ["file:///etc/passwd", "ftp://example.com/x", "gopher://example.com/"]
    )
    def test_non_http_schemes_rejected(self, url):
        session = Mock()

        with pytest.raises(SSRFError):
            _fetcher(session).fetch(url)

        session.get.assert_not_called()

    def test_url_without_host_rejected(self):
        with pytest.raises(SSRFError):
            _fetcher(Mock()).validate_url("http:///path")

    def test_resolver_receives_default_port(self):
        resolver = Mock(return_value=[PUBLIC_IP])

        _fetcher(Mock(), resolver=resolver).validate_url("https://example.com/a")

        resolver.assert_called_once_with("example.com", 443)

    def test_dns_failure_is_external_error(self):
        def resolver(host, port):
            raise socket.gaierror("Name or service not known")

        with pytest.raises(ExternalServiceError) as exc_info:
            _fetcher(Mock(), resolver=resolver).validate_url("https://nowhere.invalid/")

        assert not isinstance(exc_info.value, SSRFError)
        assert exc_info.value.service == "DNS"


class TestDnsPool:
    """Tests for the executor that runs hostname lookups."""

    def test_injected_pool_is_used_and_left_open(self):
        pool = Mock()
        pool.submit.return_value.result.return_value = [PUBLIC_IP]
        fetcher = _fetcher(Mock(), dns_pool=pool)

        fetcher.validate_url("https://example.com/a")
        fetcher.close()

        pool.submit.assert_called_once()
        pool.shutdown.assert_not_called()

    @patch("apps.extractor.fetcher.ThreadPoolExecutor")
    def test_own_pool_is_shut_down_on_close(self, mock_pool_cls):
        session = Mock()
        fetcher = _fetcher(session)

        fetcher.close()

        session.close.assert_called_once()
        mock_pool_cls.return_value.shutdown.assert_called_once_with(
            wait=False, cancel_futures=True
        )

    def test_fetchers_do_not_share_a_default_pool(self):
        first, second = _fetcher(Mock()), _fetcher(Mock())
        try:
            assert first.dns_pool is not second.dns_pool
        finally:
            first.close()
            second.close()

    def test_hung_lookup_does_not_block_the_next_fetcher(self):
        release = threading.Event()

        def hanging_resolver(host, port):
            release.wait(5)
            return [PUBLIC_IP]

        slow = _fetcher(Mock(), resolver=hanging_resolver, dns_timeout_seconds=0.05)
        fast = _fetcher(Mock())
        try:
            for _ in range(DNS_POOL_WORKERS + 1):
                with pytest.raises(ExternalServiceError, match="timed out"):
                    slow.validate_url("https://slow.example/")
            slow.close()

            fast.validate_url("https://example.com/a")
        finally:
            release.set()
            fast.close()


class TestFetch:
    """Tests for fetching, redirects and limits."""

    def test_successful_fetch(self):
        session = Mock()
        session.get.return_value = _response()

        result = _fetcher(session).fetch("https://example.com/a")

        assert result.status_code == 200
        assert result.url == "https://example.com/a"
        assert "Hello" in result.text
        _, kwargs = session.get.call_args
        assert kwargs["allow_redirects"] is False
        assert kwargs["headers"]["User-Agent"] == "test-agent"

    def test_redirect_to_private_address_blocked(self):
        session = Mock()
        session.get.return_value = _response(status=302, redirect_to="http://127.0.0.1/admin")

        with pytest.raises(SSRFError):
            _fetcher(session).fetch("https://example.com/a")

        assert session.get.call_count == 1

    def test_relative_redirect_followed(self):
        session = Mock()
        session.get.side_effect = [
            _response(status=301, redirect_to="/moved"),
            _response(),
        ]

        result = _fetcher(session).fetch("https://example.com/a")

        assert result.url == "https://example.com/moved"
        assert session.get.call_args_list[1].args[0] == "https://example.com/moved"

    def test_too_many_redirects(self):
        session = Mock()
        session.get.side_effect = lambda *a, **k: _response(
            status=302, redirect_to="https://example.com/loop"
        )

        with pytest.raises(ExternalServiceError, match="too many redirects"):
            _fetcher(session, max_redirects=2).fetch("https://example.com/a")

        assert session.get.call_count == 3

    def test_http_error_status(self):
        session = Mock()
        session.get.return_value = _response(status=404)

        with pytest.raises(ExternalServiceError, match="HTTP error: 404 Not Found"):
            _fetcher(session).fetch("https://example.com/a")

    def test_timeout_raises_fetch_timeout(self):
        session = Mock()
        session.get.side_effect = requests.Timeout("read timed out")

        with pytest.raises(FetchTimeoutError) as exc_info:
            _fetcher(session, timeout_seconds=30).fetch("https://example.com/a")

        assert "within 30 seconds" in str(exc_info.value)

    def test_connection_error_is_external_error(self):
        session = Mock()
        session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ExternalServiceError) as exc_info:
            _fetcher(session).fetch("https://example.com/a")

        assert exc_info.value.service == "Fetch"

    def test_body_size_limit(self):
        session = Mock()
        session.get.return_value = _response(body=b"x" * 2048)

        with pytest.raises(ExternalServiceError, match="exceeds 1024 bytes"):
            _fetcher(session, max_bytes=1024).fetch("https://example.com/a")

    def test_meta_charset_used_without_header_charset(self):
        body = '<html><head><meta charset="iso-8859-1"></head><body>caf\xe9</body></html>'
        session = Mock()
        session.get.return_value = _response(
            body=body.encode("latin-1"), headers={"content-type": "text/html"}
        )

        result = _fetcher(session).fetch("https://example.com/a")

        assert "café" in result.text
