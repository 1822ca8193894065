import asyncio
import re
from typing import Optional

from pydantic import ValidationError

from support_bot.logging_config import get_logger
from support_bot.schemas.ticket import Attachment, AttachmentKind, Reply, Ticket
from support_bot.services.drive_service import DriveService
from support_bot.services.errors import NotFoundError, StoreError

logger = get_logger("ticket_store")

TICKET_PREFIX = "ticket_"
REPLY_PREFIX = "reply_"
ATTACHMENT_PREFIX = "att_"
JSON_MIME_TYPE = "application/json"

_HANDLE_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]")


def _stamp(ticket_or_reply) -> str:
    return ticket_or_reply.created_at.strftime("%Y%m%dT%H%M%S")


def safe_file_name(name: str) -> str:
    cleaned = _UNSAFE_NAME_RE.sub("_", name).strip("._")
    return cleaned or "file"


class TicketStore:
    """Ticket and reply records kept as JSON objects in one Drive folder."""

    def __init__(self, drive: DriveService, folder_name: str, parent_folder_id: Optional[str] = None):
        self.drive = drive
        self.folder_name = folder_name
        self.parent_folder_id = parent_folder_id or None
        self._folder_id: Optional[str] = None
        self._folder_lock = asyncio.Lock()

    async def ensure_folder(self) -> str:
        if self._folder_id is not None:
            return self._folder_id
        async with self._folder_lock:
            if self._folder_id is None:
                self._folder_id = await self.drive.create_folder(self.folder_name, self.parent_folder_id)
        return self._folder_id

    async def upload_attachment(
        self,
        ticket_key: str,
        index: int,
        kind: AttachmentKind,
        file_name: str,
        data: bytes,
        mime_type: str,
    ) -> Attachment:
        folder_id = await self.ensure_folder()
        name = f"{ATTACHMENT_PREFIX}{ticket_key}_{index}_{safe_file_name(file_name)}"
        stored = await self.drive.upload_object(folder_id, name, data, mime_type)
        return Attachment(kind=kind, file_id=stored.id, name=stored.name, link=stored.link)

    async def save_ticket(self, ticket: Ticket) -> Ticket:
        folder_id = await self.ensure_folder()
        name = f"{TICKET_PREFIX}{_stamp(ticket)}_{ticket.user_id}.json"
        stored = await self.drive.upload_object(folder_id, name, ticket.to_document(), JSON_MIME_TYPE)
        ticket.handle = stored.id
        logger.info(
            "Ticket saved",
            extra={"context": {"handle": stored.id, "user_id": ticket.user_id, "object": name}},
        )
        return ticket

    async def get_ticket(self, handle: str) -> Ticket:
        if not _HANDLE_RE.match(handle):
            raise NotFoundError(f"Invalid ticket handle: {handle}")
        data = await self.drive.get_object(handle)
        try:
            return Ticket.from_document(data, handle=handle)
        except ValidationError as e:
            raise StoreError(f"Object {handle} is not a ticket: {e}") from e

    async def list_tickets(self, limit: int = 10) -> list[Ticket]:
        """Most recent tickets first. Unreadable objects are skipped."""
        folder_id = await self.ensure_folder()
        objects = (await self.drive.list_objects(folder_id, TICKET_PREFIX, limit=limit))[:limit]
        results = await asyncio.gather(*(self.get_ticket(obj.id) for obj in objects), return_exceptions=True)

        tickets = []
        for obj, result in zip(objects, results):
            if isinstance(result, Exception):
                logger.warning(f"Skipping unreadable ticket {obj.name}: {result}")
                continue
            tickets.append(result)
        return tickets

    async def save_reply(self, reply: Reply) -> Reply:
        folder_id = await self.ensure_folder()
        name = f"{REPLY_PREFIX}{reply.ticket_handle}_{_stamp(reply)}.json"
        stored = await self.drive.upload_object(folder_id, name, reply.to_document(), JSON_MIME_TYPE)
        reply.handle = stored.id
        logger.info(
            "Reply saved",
            extra={"context": {"handle": stored.id, "ticket": reply.ticket_handle, "operator_id": reply.operator_id}},
        )
        return reply

    async def list_replies(self, ticket_handle: str) -> list[Reply]:
        folder_id = await self.ensure_folder()
        objects = await self.drive.list_objects(folder_id, f"{REPLY_PREFIX}{ticket_handle}_")
        replies = []
        for obj in objects:
            try:
                reply = Reply.model_validate_json(await self.drive.get_object(obj.id))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable reply {obj.name}: {e}")
                continue
            reply.handle = obj.id
            replies.append(reply)
        replies.sort(key=lambda r: r.created_at)
        return replies
