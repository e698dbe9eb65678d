"""Tests for the transport helpers."""

import unittest
from unittest import mock

import requests

from politecrawl import transport


class TestSend(unittest.TestCase):
    """Verify prepared requests are forwarded to the client handle."""

    def test_send_forwards_prepared_fields(self):
        client = mock.Mock()
        prepared = requests.Request(
            "POST", "https://a.test/search", headers={"X-Test": "1"}, data={"q": "dune"}
        ).prepare()
        transport.send(client, prepared, timeout=5)
        kwargs = client.request.call_args.kwargs
        self.assertEqual(kwargs["method"], "POST")
        self.assertEqual(kwargs["url"], "https://a.test/search")
        self.assertEqual(kwargs["headers"]["X-Test"], "1")
        self.assertEqual(kwargs["data"], "q=dune")
        self.assertEqual(kwargs["timeout"], 5)

    def test_client_errors_propagate(self):
        client = mock.Mock()
        client.request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(requests.ConnectionError):
            transport.get(client, "https://a.test/")


class TestClients(unittest.TestCase):
    """Verify the client factories."""

    def test_default_client_is_requests_session(self):
        self.assertIsInstance(transport.default_client(), requests.Session)

    def test_impersonating_client_uses_curl_cffi(self):
        with mock.patch.object(transport.curl_requests, "Session") as session_cls:
            transport.impersonating_client("chrome120")
        session_cls.assert_called_once_with(impersonate="chrome120")


if __name__ == "__main__":
    unittest.main()
