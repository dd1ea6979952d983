"""Groupware (mail, calendar, meetings, files) integration.

Every call starts with ``credentials.ensure_valid()`` via
:meth:`CredentialManager.authorization_header`; a 401 from the graph API is
reported as :class:`~tether.core.errors.AuthExpired` so callers send the user
back through the authorize URL.
"""

from __future__ import annotations

import base64
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from tether.core.cache import ResponseCache
from tether.core.errors import AuthExpired, ClientError
from tether.core.health import IntegrationHealth, expiry_health
from tether.core.logging import get_logger
from tether.credentials.manager import CredentialManager
from tether.execution.retry import RetryPolicy
from tether.execution.transport import IntegrationRequest, TransportClient

logger = get_logger(__name__)

HEALTH_NAME = "groupware"
USER_TTL = 300
DEFAULT_TIME_ZONE = "America/Sao_Paulo"
DEFAULT_REMINDER_MINUTES = 15
DEFAULT_SCOPES = (
    "User.Read",
    "Mail.Send",
    "Mail.Read",
    "Calendars.ReadWrite",
    "OnlineMeetings.ReadWrite",
    "Files.ReadWrite",
    "offline_access",
)

Importance = Literal["low", "normal", "high"]


@dataclass(frozen=True)
class GroupwareUser:
    id: str
    display_name: str
    email: str | None
    job_title: str | None = None
    department: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> GroupwareUser:
        return cls(
            id=data.get("id", ""),
            display_name=data.get("displayName", ""),
            email=data.get("mail") or data.get("userPrincipalName"),
            job_title=data.get("jobTitle"),
            department=data.get("department"),
        )


@dataclass(frozen=True)
class Attachment:
    name: str
    content: bytes
    content_type: str = "application/octet-stream"

    def to_graph(self) -> dict[str, Any]:
        return {
            "@odata.type": "#microsoft.graph.fileAttachment",
            "name": self.name,
            "contentType": self.content_type,
            "contentBytes": base64.b64encode(self.content).decode("ascii"),
        }


@dataclass
class MailMessage:
    to: Sequence[str]
    subject: str
    body: str
    content_type: Literal["HTML", "Text"] = "HTML"
    cc: Sequence[str] = ()
    bcc: Sequence[str] = ()
    importance: Importance = "normal"
    attachments: Sequence[Attachment] = ()

    def to_graph(self) -> dict[str, Any]:
        message: dict[str, Any] = {
            "subject": self.subject,
            "body": {"contentType": self.content_type, "content": self.body},
            "toRecipients": _recipients(self.to),
            "importance": self.importance,
        }
        if self.cc:
            message["ccRecipients"] = _recipients(self.cc)
        if self.bcc:
            message["bccRecipients"] = _recipients(self.bcc)
        if self.attachments:
            message["attachments"] = [a.to_graph() for a in self.attachments]
        return {"message": message}


@dataclass
class CalendarEvent:
    subject: str
    start: datetime
    end: datetime
    body: str | None = None
    location: str | None = None
    attendees: Sequence[str] = ()
    online_meeting: bool = False
    reminder_minutes: int = DEFAULT_REMINDER_MINUTES
    time_zone: str = DEFAULT_TIME_ZONE

    def to_graph(self) -> dict[str, Any]:
        event: dict[str, Any] = {
            "subject": self.subject,
            "start": {"dateTime": self.start.isoformat(), "timeZone": self.time_zone},
            "end": {"dateTime": self.end.isoformat(), "timeZone": self.time_zone},
            "attendees": [
                {"emailAddress": {"address": address}, "type": "required"} for address in self.attendees
            ],
            "isOnlineMeeting": self.online_meeting,
            "reminderMinutesBeforeStart": self.reminder_minutes,
        }
        if self.body:
            event["body"] = {"contentType": "HTML", "content": self.body}
        if self.location:
            event["location"] = {"displayName": self.location}
        if self.online_meeting:
            event["onlineMeetingProvider"] = "teamsForBusiness"
        return event


@dataclass(frozen=True)
class CreatedItem:
    """Identifier and browser link of something the graph API created."""

    id: str
    web_url: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


def _recipients(addresses: Sequence[str]) -> list[dict[str, Any]]:
    return [{"emailAddress": {"address": address}} for address in addresses]


class GroupwareClient:
    """Mail, calendar, meetings and drive uploads on behalf of one user.

    Args:
        transport: Transport bound to the graph API
        credentials: Credential manager for the user's OAuth token
        cache: Shared response cache (user profile only)
        retry: Retry policy for graph calls
        upload_folder: Drive folder uploads land in
        scopes: Scopes requested during authorization
        clock: Returns an aware UTC ``datetime``
    """

    def __init__(
        self,
        transport: TransportClient,
        credentials: CredentialManager,
        *,
        cache: ResponseCache | None = None,
        retry: RetryPolicy | None = None,
        upload_folder: str = "Tether",
        scopes: Sequence[str] = DEFAULT_SCOPES,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.transport = transport
        self.credentials = credentials
        self.cache = cache if cache is not None else ResponseCache()
        self.retry = retry or RetryPolicy()
        self.upload_folder = upload_folder.strip("/")
        self.scopes = tuple(scopes)
        self._clock = clock

    @property
    def _user_cache_key(self) -> str:
        credential = self.credentials.current
        account = credential.account_id if credential and credential.account_id else "me"
        return f"groupware:user:{account}"

    async def _request(self, request: IntegrationRequest) -> Any:
        request.headers = {**request.headers, **await self.credentials.authorization_header()}
        try:
            return await self.retry.run(lambda: self.transport.execute(request))
        except ClientError as e:
            if e.http_status == 401:
                raise AuthExpired(
                    "groupware token rejected; authorization required",
                    cause=e,
                ).with_context(provider=HEALTH_NAME, method=request.method, url=e.context.url) from e
            raise

    # ── Authorization ────────────────────────────────────────────

    def authorization_url(self, state: str | None = None) -> str:
        return self.credentials.authorization_url(self.scopes, state)

    async def exchange_code(self, code: str) -> GroupwareUser:
        await self.credentials.exchange_code(code, self.scopes)
        return await self.current_user(force_refresh=True)

    async def disconnect(self) -> None:
        key = self._user_cache_key
        await self.credentials.revoke()
        self.cache.delete(key)
        logger.info("groupware.disconnected")

    # ── Profile ──────────────────────────────────────────────────

    async def current_user(self, *, force_refresh: bool = False) -> GroupwareUser:
        await self.credentials.ensure_valid()
        key = self._user_cache_key
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        payload = await self._request(IntegrationRequest("GET", "/me"))
        user = GroupwareUser.from_payload(payload if isinstance(payload, dict) else {})
        self.cache.set(key, user, USER_TTL)
        return user

    # ── Mail / calendar / files ──────────────────────────────────

    async def send_mail(self, message: MailMessage) -> None:
        await self._request(IntegrationRequest("POST", "/me/sendMail", json=message.to_graph()))
        logger.info(
            "groupware.mail_sent",
            recipients=len(message.to) + len(message.cc) + len(message.bcc),
            attachments=len(message.attachments),
        )

    async def create_event(self, event: CalendarEvent) -> CreatedItem:
        payload = await self._request(IntegrationRequest("POST", "/me/events", json=event.to_graph())) or {}
        return CreatedItem(id=payload.get("id", ""), web_url=payload.get("webLink"))

    async def create_online_meeting(
        self,
        subject: str,
        start: datetime,
        end: datetime,
        attendees: Sequence[str] = (),
    ) -> CreatedItem:
        body = {
            "subject": subject,
            "startDateTime": start.isoformat(),
            "endDateTime": end.isoformat(),
            "participants": {
                "attendees": [{"upn": address, "role": "attendee"} for address in attendees],
            },
        }
        payload = await self._request(IntegrationRequest("POST", "/me/onlineMeetings", json=body)) or {}
        return CreatedItem(id=payload.get("id", ""), web_url=payload.get("joinWebUrl"))

    async def upload_file(self, name: str, content: bytes, *, folder: str | None = None) -> CreatedItem:
        target = (folder or self.upload_folder).strip("/")
        request = IntegrationRequest(
            "PUT",
            f"/me/drive/root:/{target}/{name}:/content",
            content=content,
            headers={"Content-Type": "application/octet-stream"},
        )
        payload = await self._request(request) or {}
        logger.info("groupware.file_uploaded", folder=target, size=len(content))
        return CreatedItem(id=payload.get("id", ""), web_url=payload.get("webUrl"))

    async def list_messages(self, *, top: int = 25, folder: str = "inbox") -> list[dict[str, Any]]:
        payload = await self._request(
            IntegrationRequest(
                "GET",
                f"/me/mailFolders/{folder}/messages",
                params={"$top": str(top), "$orderby": "receivedDateTime desc"},
            )
        )
        return list((payload or {}).get("value", []))

    async def list_events(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        payload = await self._request(
            IntegrationRequest(
                "GET",
                "/me/calendarView",
                params={"startDateTime": start.isoformat(), "endDateTime": end.isoformat()},
            )
        )
        return list((payload or {}).get("value", []))

    # ── Health ───────────────────────────────────────────────────

    async def health(self) -> IntegrationHealth:
        credential = await self.credentials.load()
        if credential is None:
            return IntegrationHealth(name=HEALTH_NAME, status="disconnected")
        try:
            user = await self.current_user()
        except Exception as e:  # noqa: BLE001
            return IntegrationHealth(name=HEALTH_NAME, status="error", error=str(e)[:200])

        credential = self.credentials.current or credential
        now = self._clock()
        health = expiry_health(HEALTH_NAME, credential.expires_at, now=now, last_sync=now)
        health.details["user"] = user.email or user.display_name
        return health


__all__ = [
    "DEFAULT_SCOPES",
    "Attachment",
    "CalendarEvent",
    "CreatedItem",
    "GroupwareClient",
    "GroupwareUser",
    "MailMessage",
]
