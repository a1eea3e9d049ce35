"""Telegram bot for the Amore member directory.

This module implements the chat side of the service without relying on
a bot framework.  It talks to Telegram's HTTP API using the
``requests`` library and performs long polling to receive updates.
Each update is handled in its own asyncio task, so a slow photo upload
for one member does not hold up everybody else.  The blocking HTTP
calls run in worker threads.

Members can:

* Browse boats and their crews (``/boats``, ``/boat``).
* Search the roster (``/find``) and view profile cards (``/me``).
* Like and unlike other members (``/like``, ``/unlike`` or the 👍
  button under every profile card) and see their likes, likers and
  matches.
* Edit their own name, bio, city, Instagram handle and photo.

Only people present in the roster may use the bot; identity is the
Telegram username.

The bot expects the following environment variables:

``TELEGRAM_BOT_TOKEN``
    The token assigned by BotFather for your bot.  Required.

``ADMIN_USER_IDS``
    Comma-separated Telegram user ids allowed to run ``/reload`` and
    ``/broadcast``.

``DATABASE_URL``
    Path to the SQLite database holding the roster and likes.
"""

from __future__ import annotations

import asyncio
import logging
import random
import sys
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import requests

from amore_api.app.core.config import settings
from amore_api.app.core.db import init_db
from amore_api.app.core.logging_config import setup_logging
from amore_api.app.schemas.like import LikeOutcome
from amore_api.app.schemas.member import Member, ProfileOutcome
from amore_api.app.services import Services, build_services
from amore_api.app.services.like_store import LikeStoreError
from amore_api.app.services.roster_service import MemberWriteError


logger = logging.getLogger(__name__)

HELP_TEXT = (
    "Welcome! ⛵\n\n"
    "Start with /boats to see the list of boats and who is on them.\n\n"
    "Commands:\n"
    "/me – your profile\n"
    "/find query – find someone by name, @username or city, e.g. /find @alice or /find Lisbon\n"
    "/boat boat_or_captain – crew of a boat, e.g. /boat Salty or /boat Valera\n"
    "/boats – list of all boats\n"
    "/like @username – send a like\n"
    "/unlike @username – take a like back\n"
    "/likes – people you liked\n"
    "/likers – how many people liked you\n"
    "/matches – mutual likes (go for it!)\n"
    "/bio text – update your bio\n"
    "/insta name – update your Instagram handle\n"
    "/name Name – update your display name\n"
    "/city City – update your city\n"
    "/stats – bot statistics\n\n"
    "Tip: use the 👍 button under profile cards.\n"
    "Send a photo to the bot to update your profile photo."
)
ADMIN_HELP_TEXT = (
    "\n\nAdmin commands:\n"
    "/reload – reload the roster from the database\n"
    "/broadcast message – send a message to every member"
)
PROFILE_USAGE = {
    "bio": "/bio <text> to update your bio",
    "city": "/city <your city> to update your city",
    "instagram": "/insta <instagram name> (without @) to update your Instagram",
    "name": "/name <Name> to update your display name",
}
SELF_LIKE_TEXT = "Liking yourself is great 😅"
NOT_FOUND_TEXT = "Can't find this member"
SAVE_FAILED_TEXT = "Couldn't save that. Please try again."
PROFILE_ERROR_TEXT = "Something went wrong while updating your profile. Please try again later."
CAPTION_LIMIT = 1024
CALLBACK_DATA_LIMIT = 64

Handler = Callable[[Member, Dict[str, Any], str], Awaitable[None]]


def callback_data(prefix: str, value: str) -> str:
    """Build ``prefix:value`` trimmed to Telegram's 64-byte callback limit."""
    data = f"{prefix}:{value}".encode("utf-8")[:CALLBACK_DATA_LIMIT]
    return data.decode("utf-8", errors="ignore")


def profile_caption(member: Member) -> str:
    lines = [
        f"👤 {member.real_name or member.telegram} (@{member.username})",
        f"⛵ Boat: {member.boat_name}",
        f"🧭 Captain: {member.captain_name}",
    ]
    if member.city:
        lines.append(f"🌍 City: {member.city}")
    if member.instagram:
        lines.append(f"📸 Instagram: https://www.instagram.com/{member.instagram}")
    if member.bio:
        lines.append(f"ℹ️ Bio: {member.bio}")
    return "\n".join(lines)


def chat_target(member: Member) -> Optional[int]:
    """Where to reach a member: their chat with the bot, else their user id."""
    return member.chat_id if member.chat_id is not None else member.user_id


class TelegramAmoreBot:
    """Long-polling Telegram bot on top of the directory services."""

    def __init__(self, services: Optional[Services] = None, token: Optional[str] = None) -> None:
        self.bot_token = token or settings.telegram_bot_token
        if not self.bot_token:
            raise RuntimeError("Missing TELEGRAM_BOT_TOKEN environment variable")
        self.telegram_api_url = f"https://api.telegram.org/bot{self.bot_token}"
        self.admin_ids = settings.admin_ids()
        self.services = services or build_services(
            on_like=self._notify_like, on_match=self._notify_match
        )
        # Keep track of the last processed update to avoid repeated processing
        self.last_update_id = 0
        self._tasks: Set[asyncio.Task] = set()
        self._commands: Dict[str, Handler] = {
            "/start": self._handle_start,
            "/help": self._handle_help,
            "/me": self._handle_me,
            "/find": self._handle_find,
            "/boat": self._handle_boat,
            "/boats": self._handle_boats,
            "/like": self._handle_like,
            "/unlike": self._handle_unlike,
            "/likes": self._handle_likes,
            "/likers": self._handle_likers,
            "/matches": self._handle_matches,
            "/bio": self._profile_handler("bio"),
            "/city": self._profile_handler("city"),
            "/insta": self._profile_handler("instagram"),
            "/name": self._profile_handler("name"),
            "/stats": self._handle_stats,
            "/reload": self._handle_reload,
            "/broadcast": self._handle_broadcast,
        }

    # ------------------------------------------------------------------
    # Telegram API helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _backoff_delay(attempt: int, resp: Optional[requests.Response] = None) -> float:
        """Delay before retry ``attempt``, honouring ``Retry-After`` on 429."""
        if resp is not None and resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After")
            if retry_after is not None:
                try:
                    return float(retry_after)
                except ValueError:
                    pass
        return min(2 ** (attempt - 1), 60) + random.random()

    def _telegram_request(
        self,
        http_method: str,
        method: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        timeout: int = 10,
        max_attempts: Optional[int] = 3,
    ) -> Optional[Dict[str, Any]]:
        """Perform a request against the Telegram API with retries.

        Rate limiting (429), server errors and network failures are
        retried with exponential backoff, at most ``max_attempts`` times
        (forever when ``None``).  Other client errors are returned as the
        error body without retrying.
        """
        url = f"{self.telegram_api_url}/{method}"
        attempt = 0
        while True:
            attempt += 1
            resp = None
            try:
                resp = requests.request(http_method, url, params=params, json=payload, timeout=timeout)
                if resp.status_code != 429 and resp.status_code < 500:
                    try:
                        data = resp.json()
                    except ValueError:
                        data = None
                    if resp.status_code >= 400:
                        logger.error("Telegram %s failed: %s", method, data or resp.status_code)
                    return data
                logger.warning("Telegram %s answered %d", method, resp.status_code)
            except requests.RequestException as exc:
                logger.error("Telegram %s error: %s", method, exc)
            if max_attempts is not None and attempt >= max_attempts:
                return None
            delay = self._backoff_delay(attempt, resp)
            logger.warning("Request failure #%d, sleeping %.1fs before retry", attempt, delay)
            time.sleep(delay)

    async def _call(self, method: str, payload: Dict[str, Any], *, timeout: int = 10) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(
            self._telegram_request, "post", method, payload=payload, timeout=timeout
        )

    def _get_updates(self, timeout: int = 30) -> List[Dict[str, Any]]:
        """Request new updates from Telegram (blocking long poll)."""
        params = {"timeout": timeout, "offset": self.last_update_id + 1}
        data = self._telegram_request(
            "get", "getUpdates", params=params, timeout=timeout + 5, max_attempts=None
        )
        if isinstance(data, dict) and data.get("ok"):
            return data.get("result", [])
        if data:
            logger.error("Telegram getUpdates failed: %s", data)
        return []

    async def _send_message(
        self, chat_id: int, text: str, *, reply_markup: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return await self._call("sendMessage", payload)

    async def _send_photo(
        self, chat_id: int, photo: str, caption: str, reply_markup: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        payload: Dict[str, Any] = {"chat_id": chat_id, "photo": photo, "caption": caption[:CAPTION_LIMIT]}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return await self._call("sendPhoto", payload, timeout=30)

    async def _answer_callback_query(self, callback_id: str, text: Optional[str] = None) -> None:
        """Acknowledge a callback query to remove the loading state in Telegram clients."""
        if not callback_id:
            return
        payload: Dict[str, Any] = {"callback_query_id": callback_id}
        if text:
            payload["text"] = text
        await self._call("answerCallbackQuery", payload, timeout=5)

    # ------------------------------------------------------------------
    # Notifications (invoked by MatchService)
    # ------------------------------------------------------------------
    async def _notify_like(self, actor: Member, target: Member) -> None:
        chat_id = chat_target(target)
        if chat_id is not None:
            await self._send_message(chat_id, "Someone liked you. Who could it be? 👀")

    async def _notify_match(self, actor: Member, target: Member) -> None:
        for me, other in ((actor, target), (target, actor)):
            chat_id = chat_target(me)
            if chat_id is None:
                continue
            await self._send_message(
                chat_id,
                f"🎉 It's a match with {other.display_name} from {other.boat_name}! Say hi!",
            )

    # ------------------------------------------------------------------
    # Profile cards
    # ------------------------------------------------------------------
    async def _send_profile_card(self, chat_id: int, member: Member) -> None:
        caption = profile_caption(member)
        keyboard = {
            "inline_keyboard": [[{"text": "👍 Like", "callback_data": callback_data("like", member.username)}]]
        }
        if member.photo_file_id:
            await self._send_photo(chat_id, member.photo_file_id, caption, keyboard)
            return
        if member.photo:
            data = await self._send_photo(chat_id, member.photo, caption, keyboard)
            if data and data.get("ok"):
                sizes = (data.get("result") or {}).get("photo") or []
                if sizes:
                    try:
                        await self.services.profiles.cache_photo_reference(member.username, sizes[-1]["file_id"])
                    except MemberWriteError:
                        logger.warning("Could not cache photo reference for %s", member.username)
                return
            logger.error("Failed to send photo for member %s", member.username)
            await self._send_message(chat_id, "(Couldn't load the photo)\n" + caption, reply_markup=keyboard)
            return
        await self._send_message(chat_id, caption, reply_markup=keyboard)

    async def _send_member_list(self, chat_id: int, members: List[Member], title: str) -> None:
        if not members:
            await self._send_message(chat_id, "Nothing yet.")
            return
        lines = "\n".join(f"• {m.display_name}" for m in members)
        await self._send_message(chat_id, f"{title}\n{lines}")

    # ------------------------------------------------------------------
    # Update dispatch
    # ------------------------------------------------------------------
    def _is_admin(self, from_user: Dict[str, Any]) -> bool:
        return from_user.get("id") in self.admin_ids

    async def _handle_update(self, update: Dict[str, Any]) -> None:
        try:
            await self._dispatch_update(update)
        except Exception:
            logger.exception("Update handling failed")

    async def _dispatch_update(self, update: Dict[str, Any]) -> None:
        """Process a single update from Telegram."""
        if "callback_query" in update:
            await self._handle_callback(update["callback_query"])
            return
        message = update.get("message")
        if not message:
            return
        chat_id = (message.get("chat") or {}).get("id")
        from_user = message.get("from") or {}
        if chat_id is None or from_user.get("is_bot"):
            return
        username = from_user.get("username") or ""
        if not self.services.roster.is_known(username):
            logger.warning("Unauthorized access attempt by %s (%s)", username, from_user.get("id"))
            await self._send_message(
                chat_id,
                "This bot is only for regatta participants. "
                f"Your account ({username or 'no username'}) is not on the list, "
                "ask the organisers to add you.",
            )
            return
        member = await self._init_member(message)
        if message.get("photo"):
            await self._handle_photo(member, message)
            return
        text = (message.get("text") or "").strip()
        logger.info("Received message from %s|%s: %s (#%s)", username, from_user.get("id"), text, chat_id)
        if not text.startswith("/"):
            await self._send_message(chat_id, "Type /help to see what I can do.")
            return
        parts = text.split(" ", 1)
        command = parts[0].lower().split("@", 1)[0]
        arg = parts[1].strip() if len(parts) > 1 else ""
        handler = self._commands.get(command)
        if handler is None:
            await self._send_message(chat_id, "Unknown command. Type /help")
            return
        await handler(member, message, arg)

    async def _init_member(self, message: Dict[str, Any]) -> Member:
        """Fill in the member's Telegram ids on first contact."""
        from_user = message["from"]
        chat_id = message["chat"]["id"]
        member = self.services.matches.resolve_identity(from_user["username"])
        try:
            updated = await self.services.profiles.backfill_identifiers(
                member.username, from_user.get("id"), chat_id
            )
        except MemberWriteError:
            await self._send_message(chat_id, "Couldn't update your profile. Please try /start again later.")
            return member
        return updated or member

    async def _handle_callback(self, callback: Dict[str, Any]) -> None:
        data = callback.get("data") or ""
        callback_id = callback.get("id")
        from_user = callback.get("from") or {}
        chat_id = ((callback.get("message") or {}).get("chat") or {}).get("id")
        username = from_user.get("username") or ""
        if not data or chat_id is None:
            await self._answer_callback_query(callback_id)
            return
        if not self.services.roster.is_known(username):
            await self._answer_callback_query(callback_id, "Not authorized")
            return
        if data.startswith("like:"):
            try:
                result = await self.services.matches.request_like_toggle(username, data[len("like:"):], True)
            except LikeStoreError:
                await self._answer_callback_query(callback_id, SAVE_FAILED_TEXT)
                return
            if result.outcome is LikeOutcome.REJECTED_SELF:
                await self._answer_callback_query(callback_id, SELF_LIKE_TEXT)
            elif result.outcome is LikeOutcome.TARGET_UNKNOWN:
                await self._answer_callback_query(callback_id, NOT_FOUND_TEXT)
            else:
                await self._answer_callback_query(callback_id, "Liked! 👍")
            return
        if data.startswith("boat:"):
            boat_name = data[len("boat:"):]
            crew = self.services.directory.members_by_boat_or_captain(boat_name)
            if not crew:
                await self._answer_callback_query(callback_id, "Nobody on this boat")
                return
            await self._answer_callback_query(callback_id, f"Crew of “{boat_name}”:")
            for member in crew:
                await self._send_profile_card(chat_id, member)
            return
        await self._answer_callback_query(callback_id)

    async def _handle_photo(self, member: Member, message: Dict[str, Any]) -> None:
        file_id = message["photo"][-1].get("file_id")
        if not file_id:
            return
        try:
            await self.services.profiles.set_uploaded_photo(member.username, file_id)
        except MemberWriteError:
            await self._send_message(message["chat"]["id"], PROFILE_ERROR_TEXT)
            return
        await self._send_message(message["chat"]["id"], "Profile photo updated")

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------
    async def _handle_start(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        logger.info("User %s started the bot", member.username)
        first_name = message["from"].get("first_name") or member.real_name or member.telegram
        await self._send_message(
            message["chat"]["id"],
            f"Welcome, {first_name}! Send /boats to see the list of boats or /help for all commands",
        )

    async def _handle_help(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        text = HELP_TEXT
        if self._is_admin(message["from"]):
            text += ADMIN_HELP_TEXT
        await self._send_message(message["chat"]["id"], text)

    async def _handle_me(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        await self._send_profile_card(message["chat"]["id"], member)

    async def _handle_find(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        chat_id = message["chat"]["id"]
        if not arg:
            await self._send_message(chat_id, "Use /find <name, @username or city>, e.g. /find @alice")
            return
        results = self.services.directory.search_members(arg)
        if not results:
            await self._send_message(chat_id, "Nobody found 🤷")
            return
        limit = settings.search_result_limit
        for found in results[:limit]:
            await self._send_profile_card(chat_id, found)
        if len(results) > limit:
            await self._send_message(chat_id, f"…and {len(results) - limit} more.")

    async def _handle_boat(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        chat_id = message["chat"]["id"]
        if not arg:
            await self._send_message(chat_id, "Use /boat <boat name> or /boat <captain name>")
            return
        crew = self.services.directory.members_by_boat_or_captain(arg)
        if not crew:
            await self._send_message(chat_id, "Nobody on this boat")
            return
        await self._send_message(chat_id, f"Crew of “{arg}”:")
        for mate in crew:
            await self._send_profile_card(chat_id, mate)

    async def _handle_boats(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        rows = [
            [{
                "text": f"{boat.group_key} ({boat.member_count})",
                "callback_data": callback_data("boat", boat.boat_name),
            }]
            for boat in self.services.directory.boats()
        ]
        if not rows:
            await self._send_message(message["chat"]["id"], "No boats yet.")
            return
        await self._send_message(message["chat"]["id"], "Boats:", reply_markup={"inline_keyboard": rows})

    async def _handle_like(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        await self._toggle(member, message, arg, True)

    async def _handle_unlike(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        await self._toggle(member, message, arg, False)

    async def _toggle(self, member: Member, message: Dict[str, Any], arg: str, liked: bool) -> None:
        chat_id = message["chat"]["id"]
        if not arg:
            await self._send_message(chat_id, f"Use /{'like' if liked else 'unlike'} <@username>")
            return
        try:
            result = await self.services.matches.request_like_toggle(member.username, arg, liked)
        except LikeStoreError:
            await self._send_message(chat_id, SAVE_FAILED_TEXT)
            return
        if result.outcome is LikeOutcome.TARGET_UNKNOWN:
            await self._send_message(chat_id, NOT_FOUND_TEXT)
        elif result.outcome is LikeOutcome.REJECTED_SELF:
            await self._send_message(chat_id, SELF_LIKE_TEXT)
        elif liked:
            await self._send_message(chat_id, f"Like sent to {result.target.display_name} 👍")
        else:
            await self._send_message(chat_id, f"Like taken back from {result.target.display_name} 👎")

    async def _handle_likes(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        liked = await self.services.matches.likes_of(member.username)
        await self._send_member_list(message["chat"]["id"], liked, "Your likes:")

    async def _handle_likers(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        summary = await self.services.matches.likers_summary(member.username)
        if not summary.count:
            await self._send_message(message["chat"]["id"], "No likes yet. They're coming 💫")
            return
        await self._send_message(
            message["chat"]["id"],
            f"You have {summary.count} likes from boats {', '.join(summary.boats)}",
        )

    async def _handle_matches(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        chat_id = message["chat"]["id"]
        mutual = await self.services.matches.matches_of(member.username)
        if not mutual:
            await self._send_message(chat_id, "Matches are still ahead 💘")
            return
        await self._send_message(chat_id, f"You have {len(mutual)} matches")
        for other in mutual:
            await self._send_profile_card(chat_id, other)

    def _profile_handler(self, field: str) -> Handler:
        async def handler(member: Member, message: Dict[str, Any], arg: str) -> None:
            chat_id = message["chat"]["id"]
            if not arg:
                await self._send_message(chat_id, PROFILE_USAGE[field])
                return
            result = await self.services.profiles.request_profile_mutation(member.username, field, arg)
            if result.outcome is ProfileOutcome.OK:
                await self._send_message(chat_id, "Done!")
            elif result.outcome is ProfileOutcome.VALIDATION_ERROR:
                await self._send_message(chat_id, f"Not saved: {result.error}.")
            else:
                await self._send_message(chat_id, PROFILE_ERROR_TEXT)
        return handler

    async def _handle_stats(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        stats = await self.services.matches.stats(top=0)
        await self._send_message(
            message["chat"]["id"],
            f"Members: {stats.members} (using the bot: {stats.active_members})\n"
            f"Likes: {stats.likes}\n"
            f"Matches: {stats.matches}",
        )

    async def _handle_reload(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        chat_id = message["chat"]["id"]
        if not self._is_admin(message["from"]):
            await self._send_message(chat_id, "Unauthorized.")
            return
        count = await self.services.roster.load_all()
        await self._send_message(chat_id, f"Reloaded: {count} members.")

    async def _handle_broadcast(self, member: Member, message: Dict[str, Any], arg: str) -> None:
        chat_id = message["chat"]["id"]
        if not self._is_admin(message["from"]):
            await self._send_message(chat_id, "Unauthorized.")
            return
        if not arg:
            await self._send_message(chat_id, "Use /broadcast <message> to message every member")
            return
        sent = 0
        for recipient in self.services.directory.all_members():
            target = chat_target(recipient)
            if target is None:
                continue
            data = await self._send_message(target, arg)
            if data and data.get("ok"):
                sent += 1
            else:
                logger.error("Failed to send broadcast to %s", recipient.username)
        await self._send_message(chat_id, f"Broadcast sent to {sent} members.")

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    async def run(self) -> None:
        """Load the roster and process updates until cancelled."""
        await self.services.roster.load_all()
        me = await asyncio.to_thread(self._telegram_request, "get", "getMe")
        logger.info("Bot @%s is running...", ((me or {}).get("result") or {}).get("username"))
        try:
            while True:
                updates = await asyncio.to_thread(self._get_updates, 30)
                for update in updates:
                    self.last_update_id = max(self.last_update_id, update.get("update_id", 0))
                    task = asyncio.create_task(self._handle_update(update))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
        finally:
            for task in self._tasks:
                task.cancel()


def main() -> None:
    setup_logging(settings.log_level, settings.log_file or None)
    try:
        bot = TelegramAmoreBot()
    except RuntimeError as exc:
        logger.error(str(exc))
        sys.exit(1)
    init_db()
    try:
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user.")


if __name__ == "__main__":
    main()
