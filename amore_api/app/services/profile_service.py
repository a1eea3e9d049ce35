"""
Profile edits made by members themselves.

Every edit is validated with :class:`ProfileEdit` before anything is
written; an oversized or empty value never reaches the database.  Valid
edits are applied to a copy of the cached record and persisted with
:meth:`RosterService.update`, naming only the fields that changed so a
conflict retry cannot clobber someone else's concurrent edit.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, ValidationError

from amore_api.app.schemas.member import Member, ProfileEdit, ProfileField, ProfileOutcome
from amore_api.app.services.roster_service import MemberWriteError, RosterService


logger = logging.getLogger(__name__)


class ProfileResult(BaseModel):
    outcome: ProfileOutcome
    member: Optional[Member] = None
    error: Optional[str] = None


class ProfileService:
    def __init__(self, roster: RosterService) -> None:
        self.roster = roster

    async def request_profile_mutation(self, handle: str, field: str, value: str) -> ProfileResult:
        try:
            edit = ProfileEdit(field=field, value=value or "")
        except ValidationError as exc:
            return ProfileResult(outcome=ProfileOutcome.VALIDATION_ERROR, error=_first_error(exc))
        member = self.roster.lookup(handle)
        if member is None:
            return ProfileResult(outcome=ProfileOutcome.NOT_FOUND)

        changes = {edit.attribute: edit.value}
        if edit.field is ProfileField.PHOTO:
            # the cached upload belongs to the previous photo
            changes["photo_file_id"] = None
        try:
            saved = await self.roster.update(member.model_copy(update=changes), fields=changes)
        except MemberWriteError as exc:
            outcome = ProfileOutcome.CONFLICT_EXHAUSTED if exc.conflict else ProfileOutcome.WRITE_FAILED
            return ProfileResult(outcome=outcome, member=member, error=str(exc))
        logger.info("Member %s updated %s", saved.username, edit.field.value)
        return ProfileResult(outcome=ProfileOutcome.OK, member=saved)

    async def backfill_identifiers(self, handle: str, user_id: Optional[int], chat_id: Optional[int]) -> Optional[Member]:
        """Record Telegram ids the first time a member talks to the bot.

        Ids already stored are never overwritten.  Returns the current
        record, or ``None`` for an unknown handle.
        """
        member = self.roster.lookup(handle)
        if member is None:
            return None
        changes = {}
        if member.user_id is None and user_id is not None:
            changes["user_id"] = user_id
        if member.chat_id is None and chat_id is not None:
            changes["chat_id"] = chat_id
        if not changes:
            return member
        logger.info("Filling in %s for %s", ", ".join(sorted(changes)), member.username)
        return await self.roster.update(member.model_copy(update=changes), fields=changes)

    async def set_uploaded_photo(self, handle: str, file_id: str) -> Optional[Member]:
        """Use a photo the member sent to the bot as their profile photo."""
        return await self._set_photo_reference(handle, file_id)

    async def cache_photo_reference(self, handle: str, file_id: str) -> Optional[Member]:
        """Remember the Telegram file id obtained by sending the raw photo URL."""
        return await self._set_photo_reference(handle, file_id)

    async def _set_photo_reference(self, handle: str, file_id: str) -> Optional[Member]:
        member = self.roster.lookup(handle)
        if member is None or not file_id:
            return None
        if member.photo_file_id == file_id:
            return member
        return await self.roster.update(
            member.model_copy(update={"photo_file_id": file_id}), fields=["photo_file_id"]
        )


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    message = errors[0].get("msg", "")
    # pydantic prefixes errors raised from validators
    return message.removeprefix("Value error, ")
