"""Tests for incoming payload parsing and message content."""

import json

import pytest
from mautrix.types import Format, MessageType

from slackhook.delivery import (
    PROFILE_KEY,
    HookMessage,
    build_content,
    decode_body,
    parse_payload,
    trim_utf8_bytes,
)
from slackhook.errors import PayloadError


class TestDecodeBody:

    def test_json_body(self):
        assert decode_body(b'{"text": "hi"}', "application/json") == {"text": "hi"}

    def test_slack_form_payload(self):
        body = "payload=" + json.dumps({"text": "from form"})

        data = decode_body(body.encode(), "application/x-www-form-urlencoded")

        assert data == {"text": "from form"}

    def test_plain_form_fields(self):
        data = decode_body(b"text=hello&username=ci", "application/x-www-form-urlencoded")

        assert data == {"text": "hello", "username": "ci"}

    @pytest.mark.parametrize("raw", [b"{not json", b"[1, 2]"])
    def test_rejects_non_object_json(self, raw):
        with pytest.raises(PayloadError):
            decode_body(raw, "application/json")


class TestParsePayload:

    def test_defaults(self):
        msg = parse_payload({"text": "hello"})

        assert msg == HookMessage(text="hello")

    def test_slack_aliases(self):
        msg = parse_payload({
            "text": "hello",
            "username": "CI",
            "icon_url": "mxc://example.org/abc",
        })

        assert msg.displayname == "CI"
        assert msg.avatar_url == "mxc://example.org/abc"

    def test_non_mxc_avatar_is_dropped(self):
        msg = parse_payload({"text": "x", "avatarUrl": "https://example.org/a.png"})

        assert msg.avatar_url is None

    @pytest.mark.parametrize("data, error", [
        ({}, "missing_text"),
        ({"text": "   "}, "missing_text"),
        ({"text": "x", "format": "bbcode"}, "invalid_format"),
        ({"text": "x", "msgtype": "m.image"}, "invalid_msgtype"),
        ({"text": "x", "msgtype": ["m.text"]}, "invalid_msgtype"),
        ({"text": "x", "msgtype": {"type": "m.text"}}, "invalid_msgtype"),
    ])
    def test_invalid_payloads(self, data, error):
        with pytest.raises(PayloadError, match=error):
            parse_payload(data)


class TestBuildContent:

    @pytest.mark.asyncio
    async def test_plain_without_profile(self):
        content = await build_content(HookMessage(text="a < b"), "hook1")

        assert content.msgtype == MessageType.NOTICE
        assert content.body == "a < b"
        assert content.formatted_body is None

    @pytest.mark.asyncio
    async def test_html_is_passed_through(self):
        content = await build_content(HookMessage(text="<b>bold</b>", format="html"), "hook1")

        assert content.format == Format.HTML
        assert content.formatted_body == "<b>bold</b>"
        assert "bold" in content.body

    @pytest.mark.asyncio
    async def test_payload_msgtype_overrides_default(self):
        msg = HookMessage(text="hi", msgtype="m.text")

        content = await build_content(msg, "hook1", default_msgtype="m.notice")

        assert content.msgtype == MessageType.TEXT

    @pytest.mark.asyncio
    async def test_display_name_adds_profile_and_fallback(self):
        msg = HookMessage(text="deployed", displayname="CI <bot>",
                          avatar_url="mxc://example.org/abc")

        content = await build_content(msg, "hook1")

        assert content.body == "CI <bot>: deployed"
        assert content.formatted_body.startswith(
            "<strong data-mx-profile-fallback>CI &lt;bot&gt;: </strong>"
        )
        assert content[PROFILE_KEY] == {
            "id": "hook1",
            "displayname": "CI <bot>",
            "avatar_url": "mxc://example.org/abc",
            "has_fallback": True,
        }


def test_trim_utf8_bytes_keeps_whole_characters():
    assert trim_utf8_bytes("åäö", 3) == "å"
    assert trim_utf8_bytes("short", 255) == "short"
