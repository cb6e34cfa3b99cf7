import unittest
from unittest.mock import MagicMock, patch

import requests

from backend.auth import InMemoryAuthClient, SupabaseAuthClient, parse_bearer


class ParseBearerTests(unittest.TestCase):
    def test_parse_bearer(self):
        self.assertEqual(parse_bearer("Bearer abc"), "abc")
        self.assertEqual(parse_bearer("bearer  abc "), "abc")
        self.assertIsNone(parse_bearer(None))
        self.assertIsNone(parse_bearer("Basic abc"))
        self.assertIsNone(parse_bearer("Bearer "))


class InMemoryAuthClientTests(unittest.TestCase):
    def test_issued_token_resolves(self):
        auth = InMemoryAuthClient()
        token = auth.issue_token("user-1")
        self.assertEqual(auth.get_user_id(token), "user-1")
        self.assertIsNone(auth.get_user_id("other"))
        auth.reset()
        self.assertIsNone(auth.get_user_id(token))


class SupabaseAuthClientTests(unittest.TestCase):
    def setUp(self):
        self.auth = SupabaseAuthClient(url="https://project.supabase.co/", anon_key="anon")

    @patch("backend.auth.requests.get")
    def test_valid_token_returns_user_id(self, mock_get):
        mock_get.return_value = MagicMock(status_code=200)
        mock_get.return_value.json.return_value = {"id": "user-42"}

        self.assertEqual(self.auth.get_user_id("token"), "user-42")
        mock_get.assert_called_once_with(
            "https://project.supabase.co/auth/v1/user",
            headers={"Authorization": "Bearer token", "apikey": "anon"},
            timeout=10,
        )

    @patch("backend.auth.requests.get")
    def test_rejected_token_returns_none(self, mock_get):
        mock_get.return_value = MagicMock(status_code=401)
        self.assertIsNone(self.auth.get_user_id("token"))

    @patch("backend.auth.requests.get")
    def test_non_json_user_payload_returns_none(self, mock_get):
        mock_get.return_value = MagicMock(status_code=200)
        mock_get.return_value.json.side_effect = ValueError("not json")
        self.assertIsNone(self.auth.get_user_id("token"))

    @patch("backend.auth.requests.get")
    def test_unreachable_provider_returns_none(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("down")
        self.assertIsNone(self.auth.get_user_id("token"))


if __name__ == "__main__":
    unittest.main()
