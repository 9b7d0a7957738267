"""Tests for request utility functions."""

from unittest.mock import MagicMock

from app.core.request_utils import UNKNOWN_CLIENT, _is_valid_ip, get_client_ip

PROXY = "10.0.0.2"


class TestIsValidIP:
    """Tests for _is_valid_ip function."""

    def test_valid_addresses(self):
        assert _is_valid_ip("192.168.1.1") is True
        assert _is_valid_ip("8.8.8.8") is True
        assert _is_valid_ip("::1") is True
        assert _is_valid_ip("2001:db8::1") is True

    def test_invalid_addresses(self):
        assert _is_valid_ip("") is False
        assert _is_valid_ip("not-an-ip") is False
        assert _is_valid_ip("256.1.1.1") is False
        assert _is_valid_ip("192.168.1.1:8080") is False
        assert _is_valid_ip(" 192.168.1.1") is False  # Leading space


class TestGetClientIP:
    """Tests for get_client_ip function."""

    def _create_mock_request(self, x_real_ip=None, x_forwarded_for=None, client_host=None):
        """Create a mock request."""
        request = MagicMock()

        headers = {}
        if x_real_ip is not None:
            headers["X-Real-IP"] = x_real_ip
        if x_forwarded_for is not None:
            headers["X-Forwarded-For"] = x_forwarded_for

        request.headers.get = lambda key, default=None: headers.get(key, default)

        if client_host:
            request.client = MagicMock()
            request.client.host = client_host
        else:
            request.client = None

        return request

    def test_client_host_without_proxies(self):
        request = self._create_mock_request(client_host="9.10.11.12")

        assert get_client_ip(request) == "9.10.11.12"

    def test_no_client_is_unknown(self):
        request = self._create_mock_request()

        assert get_client_ip(request) == UNKNOWN_CLIENT

    def test_forwarded_headers_ignored_without_trusted_proxies(self):
        """Spoofed X-Forwarded-For cannot dodge per-client rate limits."""
        request = self._create_mock_request(
            x_forwarded_for="1.2.3.4", x_real_ip="5.6.7.8", client_host="9.10.11.12"
        )

        assert get_client_ip(request) == "9.10.11.12"

    def test_forwarded_headers_ignored_from_untrusted_peer(self):
        request = self._create_mock_request(x_forwarded_for="1.2.3.4", client_host="9.10.11.12")

        assert get_client_ip(request, {PROXY}) == "9.10.11.12"

    def test_first_forwarded_for_from_trusted_proxy(self):
        request = self._create_mock_request(
            x_forwarded_for="1.2.3.4, 5.6.7.8", client_host=PROXY
        )

        assert get_client_ip(request, {PROXY}) == "1.2.3.4"

    def test_x_real_ip_from_trusted_proxy(self):
        request = self._create_mock_request(x_real_ip=" 2001:db8::1 ", client_host=PROXY)

        assert get_client_ip(request, {PROXY}) == "2001:db8::1"

    def test_invalid_forwarded_for_falls_back(self):
        request = self._create_mock_request(
            x_forwarded_for="garbage", x_real_ip="5.6.7.8", client_host=PROXY
        )

        assert get_client_ip(request, {PROXY}) == "5.6.7.8"

    def test_all_invalid_falls_back_to_peer(self):
        request = self._create_mock_request(
            x_forwarded_for="garbage", x_real_ip="invalid", client_host=PROXY
        )

        assert get_client_ip(request, {PROXY}) == PROXY
