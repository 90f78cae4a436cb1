"""Tests for the LINE Messaging API transport."""

from unittest.mock import MagicMock

import pytest
import requests

from linegate.outbound.client import PUSH_PATH, REPLY_PATH, LineMessagingApi, ProviderHTTPError


def _response(status: int, body=None, headers=None):
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    if body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


def _api(response):
    session = MagicMock()
    session.post.return_value = response
    return LineMessagingApi("https://api.example", timeout=3, session=session), session


class TestReply:
    def test_posts_reply_body(self):
        api, session = _api(_response(200, {}))

        api.reply("rt-1", [{"type": "text", "text": "hi"}], "tok")

        args, kwargs = session.post.call_args
        assert args[0] == f"https://api.example{REPLY_PATH}"
        assert kwargs["json"] == {"replyToken": "rt-1", "messages": [{"type": "text", "text": "hi"}]}
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert "X-Line-Retry-Key" not in kwargs["headers"]
        assert kwargs["timeout"] == 3

    def test_error_carries_status_and_message(self):
        api, _ = _api(_response(400, {"message": "Invalid reply token"}))

        with pytest.raises(ProviderHTTPError) as exc_info:
            api.reply("rt-1", [], "tok")

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Invalid reply token"
        assert exc_info.value.retry_after is None

    def test_retry_after_parsed(self):
        api, _ = _api(_response(429, None, {"Retry-After": "12"}))

        with pytest.raises(ProviderHTTPError) as exc_info:
            api.reply("rt-1", [], "tok")

        assert exc_info.value.retry_after == 12.0
        assert exc_info.value.message == ""

    def test_network_errors_propagate(self):
        session = MagicMock()
        session.post.side_effect = requests.Timeout("slow")
        api = LineMessagingApi(session=session)

        with pytest.raises(requests.Timeout):
            api.reply("rt-1", [], "tok")


class TestPush:
    def test_retry_key_header(self):
        api, session = _api(_response(200, {}))

        api.push("Uabc", [{"type": "text", "text": "hi"}], "tok", retry_key="key-1")

        args, kwargs = session.post.call_args
        assert args[0] == f"https://api.example{PUSH_PATH}"
        assert kwargs["json"]["to"] == "Uabc"
        assert kwargs["headers"]["X-Line-Retry-Key"] == "key-1"
