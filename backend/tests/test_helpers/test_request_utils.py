"""Tests for request_utils helper functions."""

from unittest.mock import MagicMock

from helpers.request_utils import get_client_ip, get_client_ip_or_unknown


class TestGetClientIp:
    """Test cases for get_client_ip function."""

    def test_x_real_ip_header(self):
        """X-Real-IP wins over everything else."""
        request = MagicMock()
        request.headers = {"X-Real-IP": " 192.168.1.100 ", "X-Forwarded-For": "1.2.3.4"}
        request.client = MagicMock(host="10.0.0.1")

        assert get_client_ip(request) == "192.168.1.100"

    def test_x_forwarded_for_takes_first_hop(self):
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.2, 10.0.0.3"}
        request.client = MagicMock(host="10.0.0.1")

        assert get_client_ip(request) == "203.0.113.7"

    def test_falls_back_to_client_host(self):
        request = MagicMock()
        request.headers = {}
        request.client = MagicMock(host="10.0.0.1")

        assert get_client_ip(request) == "10.0.0.1"

    def test_no_client(self):
        request = MagicMock()
        request.headers = {}
        request.client = None

        assert get_client_ip(request) is None
        assert get_client_ip_or_unknown(request) == "unknown"
