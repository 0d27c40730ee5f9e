import json, html
from dataclasses import dataclass
from typing import Optional, Dict, Any, Tuple
from urllib.parse import parse_qs

from mautrix.types import TextMessageEventContent, MessageType, Format
from mautrix.util import markdown
from mautrix.util.formatter import parse_html

from .errors import PayloadError

FORMATS = ("plain", "html", "markdown")
MSGTYPES = {
    "m.text": MessageType.TEXT,
    "m.notice": MessageType.NOTICE,
    "m.emote": MessageType.EMOTE,
}
PROFILE_KEY = "com.beeper.per_message_profile"

# ---------------- utils ----------------

def trim_utf8_bytes(s: str, limit: int) -> str:
    """Trim string to at most `limit` UTF-8 bytes."""
    b = (s or "").encode("utf-8")
    if len(b) <= limit:
        return s or ""
    return b[:limit].decode("utf-8", errors="ignore")

def _first_str(data: Dict[str, Any], *keys: str) -> Optional[str]:
    for k in keys:
        v = data.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None

# ---------------- payload ----------------

@dataclass
class HookMessage:
    text: str
    format: str = "plain"
    displayname: Optional[str] = None
    avatar_url: Optional[str] = None
    msgtype: Optional[str] = None


def decode_body(raw: bytes, content_type: str) -> Dict[str, Any]:
    """Decode a webhook request body into a dict.

    Slack clients send either a JSON body or a form with a ``payload`` field
    holding the JSON.
    """
    text = raw.decode("utf-8", errors="replace")
    ctype = (content_type or "").lower()
    if "application/x-www-form-urlencoded" in ctype:
        form = {k: v[0] for k, v in parse_qs(text).items()}
        if "payload" not in form:
            return form
        text = form["payload"]
    try:
        data = json.loads(text or "{}")
    except ValueError:
        raise PayloadError("invalid_json") from None
    if not isinstance(data, dict):
        raise PayloadError("invalid_json")
    return data


def parse_payload(data: Dict[str, Any]) -> HookMessage:
    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        raise PayloadError("missing_text")

    fmt = str(data.get("format") or "plain").lower()
    if fmt not in FORMATS:
        raise PayloadError("invalid_format")

    msgtype = data.get("msgtype")
    if msgtype is not None and (not isinstance(msgtype, str) or msgtype not in MSGTYPES):
        raise PayloadError("invalid_msgtype")

    avatar = _first_str(data, "avatarUrl", "avatar_url", "icon_url")
    if avatar and not avatar.startswith("mxc://"):
        avatar = None

    return HookMessage(
        text=text,
        format=fmt,
        displayname=_first_str(data, "displayName", "username"),
        avatar_url=avatar,
        msgtype=msgtype,
    )

# ---------------- content ----------------

async def render(msg: HookMessage) -> Tuple[str, str]:
    if msg.format == "html":
        return await parse_html(msg.text), msg.text
    if msg.format == "markdown":
        html_body = markdown.render(msg.text)
        return await parse_html(html_body), html_body
    return msg.text, html.escape(msg.text).replace("\n", "<br>")


async def build_content(msg: HookMessage, hook_id: str, default_msgtype: str = "m.notice"
                        ) -> TextMessageEventContent:
    plain, html_body = await render(msg)
    msgtype = MSGTYPES.get(msg.msgtype or default_msgtype, MessageType.NOTICE)

    if not msg.displayname:
        if msg.format == "plain":
            return TextMessageEventContent(msgtype=msgtype, body=plain)
        return TextMessageEventContent(msgtype=msgtype, body=plain,
                                       format=Format.HTML, formatted_body=html_body)

    displayname = trim_utf8_bytes(msg.displayname, 255)
    prefix = f"<strong data-mx-profile-fallback>{html.escape(displayname)}: </strong>"
    content = TextMessageEventContent(
        msgtype=msgtype,
        body=f"{displayname}: {plain}",
        format=Format.HTML,
        formatted_body=f"{prefix}{html_body}",
    )
    content[PROFILE_KEY] = {
        "id": hook_id,
        "displayname": displayname,
        "avatar_url": msg.avatar_url or "",
        "has_fallback": True,
    }
    return content
