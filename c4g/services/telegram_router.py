"""
Telegram Router: one platform bot, many user containers.

Inbound updates arrive on the webhook; the sender's chat is resolved to an
instance through its approved pairing, the text is forwarded to the
instance's chat endpoint, and the reply is sent back through the Bot API.

Every failure a user can hit maps to its own canned message: the instance
is still provisioning, unreachable, slow, or in error. They are never
collapsed into one generic string.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from c4g.db.models import InstanceStatus
from c4g.runtime.labels import instance_url
from c4g.services.instance_store import InstanceStore
from c4g.services.pairing import PairingService

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096
DASHBOARD_URL = "https://app.claw4growth.com/dashboard"

TROUBLE_MESSAGE = (
    "⚠️ Your operator is having trouble processing that request. "
    "Please try again in a moment."
)
TIMEOUT_MESSAGE = "⏳ Your operator is taking longer than expected. Please try again."
STARTING_UP_MESSAGE = (
    "⚠️ Could not reach your operator. It may be starting up, try again in a minute."
)
PROVISIONING_MESSAGE = (
    "⏳ Your operator is still being set up.\n\nIt should be ready soon. Try again in a minute!"
)
ERROR_STATE_MESSAGE = (
    "🔴 Your operator ran into a problem and is not available right now.\n\n"
    f"Check its status on your dashboard: {DASHBOARD_URL}"
)
STOPPED_MESSAGE = (
    "⏸ Your operator is currently *stopped*.\n\n"
    f"Start it again from your dashboard: {DASHBOARD_URL}"
)
NOT_PAIRED_MESSAGE = (
    "👋 Welcome to Claw4Growth!\n\n"
    "I don't see a paired account for your Telegram. To get started:\n\n"
    "1. Go to claw4growth.com and complete the onboarding\n"
    "2. After deployment, you'll receive a pairing code\n"
    "3. Send me: /start YOUR_CODE"
)
HELP_MESSAGE = (
    "🤖 *Claw4Growth Bot*\n\n"
    "I'm your AI marketing operator. Here's how it works:\n\n"
    "1️⃣ Complete onboarding at claw4growth.com\n"
    "2️⃣ Pair your account with /start <code>\n"
    "3️⃣ Send me any marketing task!\n\n"
    "*Commands:*\n"
    "/start <code> : pair your account\n"
    "/status : check your operator status\n"
    "/help : show this message"
)
PAIRING_FAILED_MESSAGE = (
    "❌ Invalid or expired pairing code.\n\n"
    "Please check your code and try again, or generate a new one from your dashboard."
)

_STATUS_GATE = {
    InstanceStatus.PROVISIONING.value: PROVISIONING_MESSAGE,
    InstanceStatus.ERROR.value: ERROR_STATE_MESSAGE,
    InstanceStatus.STOPPED.value: STOPPED_MESSAGE,
}

_STATUS_EMOJI = {
    InstanceStatus.RUNNING.value: "🟢",
    InstanceStatus.PROVISIONING.value: "🟡",
}


@dataclass
class ResolvedInstance:
    instance_id: str
    user_id: str
    subdomain: str
    url: str
    status: str


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """Split ``text`` into ordered chunks of at most ``limit`` characters."""
    if not text:
        return [""]
    return [text[i:i + limit] for i in range(0, len(text), limit)]


def _is_parse_error(payload: Dict[str, Any]) -> bool:
    description = str(payload.get("description") or "").lower()
    return "parse" in description


class TelegramRouter:
    def __init__(
        self,
        store: InstanceStore,
        pairing: PairingService,
        http: httpx.AsyncClient,
        settings,
    ):
        self.store = store
        self.pairing = pairing
        self.http = http
        self.settings = settings

    # ── Resolution ──────────────────────────────────────────────────

    async def resolve_instance(self, chat_id: str) -> Optional[ResolvedInstance]:
        """Instance behind the latest approved pairing for ``chat_id``, or None."""
        pairing = await self.pairing.latest_for_chat(chat_id)
        if pairing is None:
            return None

        instance = None
        if pairing.instance_id:
            instance = await self.store.get_instance(pairing.instance_id)
        if instance is None:
            # paired before the instance existed, or it was re-created
            instance = await self.store.get_instance_for_user(pairing.user_id)
        if instance is None:
            return None

        return ResolvedInstance(
            instance_id=instance.id,
            user_id=instance.user_id,
            subdomain=instance.subdomain,
            url=instance_url(instance.subdomain, self.settings.platform_domain),
            status=instance.status,
        )

    # ── Forwarding ──────────────────────────────────────────────────

    async def forward(self, url: str, text: str, chat_id: str) -> str:
        """Send ``text`` to the instance and return its reply or a canned fallback."""
        try:
            response = await self.http.post(
                f"{url.rstrip('/')}/api/chat",
                json={"message": text, "source": "telegram", "sender_id": str(chat_id)},
                headers={"X-Source": "telegram", "X-Telegram-Id": str(chat_id)},
                timeout=self.settings.forward_timeout,
            )
        except httpx.TimeoutException:
            logger.warning("[ROUTER] Forward to %s timed out", url)
            return TIMEOUT_MESSAGE
        except httpx.HTTPError as e:
            logger.warning(f"[ROUTER] Could not reach {url}: {e}")
            return STARTING_UP_MESSAGE

        if not response.is_success:
            logger.error(f"[ROUTER] {url} responded {response.status_code}: {response.text[:300]}")
            return TROUBLE_MESSAGE

        try:
            data = response.json()
        except ValueError:
            logger.error(f"[ROUTER] {url} returned a non-JSON body")
            return TROUBLE_MESSAGE
        if not isinstance(data, dict):
            return TROUBLE_MESSAGE
        return data.get("response") or data.get("message") or "(no response)"

    # ── Bot API ─────────────────────────────────────────────────────

    def _bot_url(self, method: str) -> str:
        return f"{self.settings.telegram_api_base}/bot{self.settings.telegram_bot_token}/{method}"

    async def _bot_call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.http.post(
            self._bot_url(method),
            json=payload,
            timeout=self.settings.telegram_send_timeout,
        )
        try:
            data = response.json()
        except ValueError:
            data = {"ok": False, "description": response.text[:300]}
        if not response.is_success and data.get("ok") is None:
            data["ok"] = False
        return data

    async def send_reply(self, chat_id: str, text: str) -> None:
        """Send ``text`` in ordered 4096-character chunks, Markdown first."""
        if not self.settings.telegram_bot_token:
            logger.error("[ROUTER] TELEGRAM_BOT_TOKEN not configured, dropping reply")
            return

        for chunk in split_message(text):
            try:
                result = await self._bot_call(
                    "sendMessage", {"chat_id": chat_id, "text": chunk, "parse_mode": "Markdown"}
                )
                if result.get("ok"):
                    continue
                if _is_parse_error(result):
                    result = await self._bot_call("sendMessage", {"chat_id": chat_id, "text": chunk})
                    if result.get("ok"):
                        continue
                logger.error(f"[ROUTER] sendMessage to {chat_id} failed: {result.get('description')}")
            except httpx.HTTPError as e:
                logger.error(f"[ROUTER] sendMessage to {chat_id} failed: {e}")

    async def send_typing(self, chat_id: str) -> None:
        if not self.settings.telegram_bot_token:
            return
        try:
            await self._bot_call("sendChatAction", {"chat_id": chat_id, "action": "typing"})
        except httpx.HTTPError as e:
            logger.debug(f"[ROUTER] typing indicator failed: {e}")

    # ── Updates ─────────────────────────────────────────────────────

    async def handle_update(self, update: Dict[str, Any]) -> None:
        """Process one webhook update. Only text messages are handled."""
        message = update.get("message") or {}
        text = (message.get("text") or "").strip()
        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        if not text or not sender.get("id") or not chat.get("id"):
            return

        chat_id = str(chat["id"])
        first_name = sender.get("first_name") or "there"

        if text.startswith("/start"):
            await self._handle_start(text, chat_id, first_name)
            return
        if text == "/help":
            await self.send_reply(chat_id, HELP_MESSAGE)
            return

        resolved = await self.resolve_instance(chat_id)
        if text == "/status":
            await self.send_reply(chat_id, self._status_text(resolved))
            return
        if resolved is None:
            await self.send_reply(chat_id, NOT_PAIRED_MESSAGE)
            return

        gate = _STATUS_GATE.get(resolved.status)
        if gate is not None:
            await self.send_reply(chat_id, gate)
            return

        await self.send_typing(chat_id)
        reply = await self.forward(resolved.url, text, chat_id)
        await self.send_reply(chat_id, reply)

    async def _handle_start(self, text: str, chat_id: str, first_name: str) -> None:
        parts = text.split(maxsplit=1)
        if len(parts) < 2:
            resolved = await self.resolve_instance(chat_id)
            if resolved is not None:
                await self.send_reply(
                    chat_id,
                    f"👋 Welcome back, {first_name}!\n\n"
                    f"Your operator is *{resolved.status}*. Just send me any marketing task!",
                )
            else:
                await self.send_reply(chat_id, NOT_PAIRED_MESSAGE)
            return

        result = await self.pairing.approve(parts[1], chat_id)
        if not result.success:
            await self.send_reply(chat_id, PAIRING_FAILED_MESSAGE)
            return

        operator = "Your Operator"
        if result.instance_id:
            config = await self.store.get_config(result.instance_id)
            if config and config.onboarding_data and config.onboarding_data.get("operatorName"):
                operator = config.onboarding_data["operatorName"]

        await self.send_reply(
            chat_id,
            "✅ *Connected Successfully!*\n\n"
            f"👋 Hi {first_name}, I'm *{operator}*.\n"
            "I'm your new AI marketing team member.\n\n"
            f"👉 [Connect your apps here]({DASHBOARD_URL})\n\n"
            "Once you're ready, just ask me to start working!",
        )

    def _status_text(self, resolved: Optional[ResolvedInstance]) -> str:
        if resolved is None:
            return (
                "❌ No paired account found.\n\n"
                "Complete onboarding at claw4growth.com and use the pairing code to connect."
            )
        emoji = _STATUS_EMOJI.get(resolved.status, "🔴")
        return f"{emoji} *Operator Status:* {resolved.status}\n🌐 Dashboard: {DASHBOARD_URL}"
