import time
from typing import Optional, Dict, Any

from aiohttp.web import Request, Response, json_response

from maubot import Plugin, PluginWebApp, MessageEvent
from maubot.handlers import command, web
from mautrix.types import RoomID, UserID
from mautrix.util.config import BaseProxyConfig, ConfigUpdateHelper

from .delivery import decode_body, parse_payload, build_content
from .errors import PayloadError, WebhookNotFound, WebhookPermissionError
from .migrations import upgrade_table
from .power_levels import RoomStateReader
from .provisioning import ProvisioningService
from .store import WebhookStore, Webhook

# ---------------- config ----------------

class PluginConfig(BaseProxyConfig):
    def do_update(self, h: ConfigUpdateHelper) -> None:
        h.copy("public_url")
        h.copy("message_type")     # m.text|m.notice
        # http
        h.copy("max_body_bytes")
        h.copy("rate_limit_per_minute")
        h.copy("provisioning.secret")

# ---------------- plugin ----------------

class SlackHookPlugin(Plugin):
    config: PluginConfig
    webapp: PluginWebApp
    store: WebhookStore
    provisioning: ProvisioningService

    @classmethod
    def get_db_upgrade_table(cls):
        return upgrade_table

    @classmethod
    def get_config_class(cls):
        return PluginConfig

    async def start(self) -> None:
        self.config.load_and_update()
        self._rate: Dict[str, int] = {}  # simple in-memory rate bucket
        self._rate_minute = 0
        self.store = WebhookStore(self.database)
        self.provisioning = ProvisioningService(
            self.store, RoomStateReader(self.client), log=self.log.getChild("provisioning")
        )
        self.log.info(f"Webhook base URL: {self.hook_base_url}")

    @property
    def hook_base_url(self) -> str:
        base = (self.config["public_url"] or "").strip()
        if not base:
            return f"{self.webapp_url}hook/"
        return base.rstrip("/") + "/hook/"

    def hook_url(self, hook: Webhook) -> str:
        return f"{self.hook_base_url}{hook.id}"

    # ---- rate limiting (in-memory) ----
    def _rate_ok(self, key: str) -> bool:
        limit = int(self.config["rate_limit_per_minute"] or 0)
        if limit <= 0:
            return True
        minute = int(time.time() // 60)
        bucket = f"{key}:{minute}"
        if minute != self._rate_minute:
            self._rate.clear()
            self._rate_minute = minute
        count = self._rate.get(bucket, 0)
        if count >= limit:
            return False
        self._rate[bucket] = count + 1
        return True

    # ---- commands ----
    @command.new(name="webhook", require_subcommand=True, help="Manage webhooks in this room")
    async def webhook(self, evt: MessageEvent) -> None:
        await self.webhook_help(evt)

    @webhook.subcommand(name="help", help="Show help")
    async def webhook_help(self, evt: MessageEvent) -> None:
        text = (
            "**Slack-style webhooks**\n\n"
            "- `!webhook new [label]` — Create a webhook for this room\n"
            "- `!webhook list` — List this room's webhooks\n"
            "- `!webhook delete <id>` — Delete a webhook\n\n"
            "**HTTP**\n"
            "- `POST <hook url>` with JSON `{ \"text\": \"hi\" }`\n"
            "- Optional: `format` (`plain|html|markdown`), `displayName`, `avatarUrl` (mxc://…), `msgtype`\n"
            "\nManaging webhooks needs the power level required to change room state."
        )
        await self.client.send_markdown(evt.room_id, text)

    @webhook.subcommand(name="new", help="Create a webhook: !webhook new [label]")
    @command.argument("label", required=False, pass_raw=True)
    async def webhook_new(self, evt: MessageEvent, label: Optional[str] = None) -> None:
        label = (label or "").strip() or None
        try:
            hook = await self.provisioning.create_webhook(evt.room_id, evt.sender, label)
        except WebhookPermissionError as e:
            await evt.reply(e.message)
            return
        await self.client.send_markdown(
            evt.room_id,
            "🔗 **Webhook created**\n\n"
            f"`POST {self.hook_url(hook)}`\n"
            "Body (JSON): `{ \"text\": \"hi\" }`\n\n"
            f"_Anyone with this URL can post here. Delete it with `!webhook delete {hook.id}`._"
        )

    @webhook.subcommand(name="list", help="List webhooks in this room")
    async def webhook_list(self, evt: MessageEvent) -> None:
        try:
            hooks = await self.provisioning.get_webhooks(evt.room_id, evt.sender)
        except WebhookPermissionError as e:
            await evt.reply(e.message)
            return
        if not hooks:
            await evt.reply("No webhooks here yet. Use `!webhook new [label]`.")
            return
        lines = [f"- `{h.id}` — {h.label or 'unlabelled'} (by {h.user_id})" for h in hooks]
        await self.client.send_markdown(evt.room_id, "\n".join(lines))

    @webhook.subcommand(name="delete", help="Delete a webhook: !webhook delete <id>")
    @command.argument("hook_id", required=True)
    async def webhook_delete(self, evt: MessageEvent, hook_id: str) -> None:
        try:
            await self.provisioning.delete_webhook(evt.room_id, evt.sender, hook_id)
        except WebhookPermissionError as e:
            await evt.reply(e.message)
            return
        except WebhookNotFound:
            await evt.reply("No such webhook.")
            return
        await evt.reply(f"🗑️ Deleted webhook `{hook_id}`.")

    # ---------------- web handlers ----------------

    @web.post("/hook/{hook_id}")
    async def handle_hook(self, req: Request) -> Response:
        max_bytes = int(self.config["max_body_bytes"] or 0)
        if max_bytes and req.content_length and req.content_length > max_bytes:
            return error_response(413, "payload_too_large")

        hook_id = req.match_info["hook_id"]
        if not self._rate_ok(f"hook:{hook_id}"):
            return error_response(429, "rate_limited")

        hook = await self.store.get_webhook(hook_id)
        if not hook:
            return error_response(404, "unknown_hook")

        try:
            data = decode_body(await req.read(), req.headers.get("Content-Type", ""))
            msg = parse_payload(data)
        except PayloadError as e:
            return error_response(400, str(e))

        content = await build_content(msg, hook.id, self.config["message_type"] or "m.notice")
        try:
            await self.client.send_message(hook.room_id, content)
        except Exception:
            self.log.exception(f"Send failed for hook {hook.id} in {hook.room_id}")
            return error_response(500, "send_failed")
        return json_response({"success": True})

    def _provisioning_auth(self, req: Request) -> Optional[Response]:
        secret = self.config["provisioning.secret"]
        if not secret:
            return error_response(404, "provisioning_disabled")
        if req.rel_url.query.get("token") != secret:
            return error_response(401, "bad_token")
        if not req.rel_url.query.get("userId"):
            return error_response(400, "missing_user_id")
        return None

    @web.put("/provision/{room_id}/hook")
    async def provision_create(self, req: Request) -> Response:
        err = self._provisioning_auth(req)
        if err:
            return err
        label = None
        if req.can_read_body:
            try:
                body = await req.json()
            except ValueError:
                return error_response(400, "invalid_json")
            if isinstance(body, dict) and isinstance(body.get("label"), str):
                label = body["label"]
        room_id = RoomID(req.match_info["room_id"])
        user_id = UserID(req.rel_url.query["userId"])
        try:
            hook = await self.provisioning.create_webhook(room_id, user_id, label)
        except WebhookPermissionError as e:
            return error_response(403, e.message)
        return json_response({"success": True, "result": {**hook.serialize(), "url": self.hook_url(hook)}})

    @web.get("/provision/{room_id}/hooks")
    async def provision_list(self, req: Request) -> Response:
        err = self._provisioning_auth(req)
        if err:
            return err
        room_id = RoomID(req.match_info["room_id"])
        user_id = UserID(req.rel_url.query["userId"])
        try:
            hooks = await self.provisioning.get_webhooks(room_id, user_id)
        except WebhookPermissionError as e:
            return error_response(403, e.message)
        return json_response({
            "success": True,
            "results": [{**h.serialize(), "url": self.hook_url(h)} for h in hooks],
        })

    @web.delete("/provision/{room_id}/hook/{hook_id}")
    async def provision_delete(self, req: Request) -> Response:
        err = self._provisioning_auth(req)
        if err:
            return err
        room_id = RoomID(req.match_info["room_id"])
        user_id = UserID(req.rel_url.query["userId"])
        try:
            await self.provisioning.delete_webhook(room_id, user_id, req.match_info["hook_id"])
        except WebhookPermissionError as e:
            return error_response(403, e.message)
        except WebhookNotFound as e:
            return error_response(404, str(e))
        return json_response({"success": True})


def error_response(status: int, message: str) -> Response:
    body: Dict[str, Any] = {"success": False, "message": message}
    return json_response(body, status=status)
