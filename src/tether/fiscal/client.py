"""Fiscal-authority client.

All traffic goes through a server-side gateway that holds the digital
certificate and signs XML: ``POST {gateway}/nfe`` with an ``action`` field
(``emitir``, ``cancelar``, ``carta_correcao``, ``consultar``,
``status_servico``), ``POST {gateway}/certificate`` for certificate info,
upload and password checks, and ``POST {gateway}/danfe`` for the printable
document.

While the owner is in contingency, :meth:`FiscalClient.issue` skips the
authority round trip and returns a response tagged with the active
contingency type.
"""

from __future__ import annotations

import base64
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from tether.core.errors import CancellationWindowExpired, ClientError, IntegrationUnavailable, ValidationError
from tether.core.health import EXPIRY_WARNING_DAYS, IntegrationHealth
from tether.core.logging import get_logger
from tether.core.secrets import SecretValue, reveal, to_secret
from tether.execution.retry import RetryPolicy
from tether.execution.transport import TransportClient
from tether.fiscal.contingency import ContingencyStateMachine, ContingencyStatus, ContingencyType

logger = get_logger(__name__)

SERVICE_ONLINE = "107"
DEFAULT_CANCELLATION_WINDOW = timedelta(hours=24)
HEALTH_NAME = "fiscal"


def _parse_datetime(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass(frozen=True)
class FiscalResponse:
    """Outcome of an issuance, cancellation or correction letter."""

    success: bool
    access_key: str | None = None
    protocol: str | None = None
    authorized_at: datetime | None = None
    status_code: str | None = None
    reason: str | None = None
    xml: str | None = None
    document_url: str | None = None
    contingency_type: ContingencyType | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> FiscalResponse:
        payload = payload or {}
        return cls(
            success=bool(payload.get("success")),
            access_key=payload.get("chave"),
            protocol=payload.get("protocolo"),
            authorized_at=_parse_datetime(payload.get("dataAutorizacao")),
            status_code=payload.get("codigoStatus"),
            reason=payload.get("motivo"),
            xml=payload.get("xml"),
            document_url=payload.get("danfeUrl"),
        )

    @property
    def in_contingency(self) -> bool:
        return self.contingency_type is not None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["authorized_at"] = self.authorized_at.isoformat() if self.authorized_at else None
        data["contingency_type"] = self.contingency_type.value if self.contingency_type else None
        return data


@dataclass(frozen=True)
class ServiceStatus:
    """Result of the authority's service-status probe."""

    online: bool
    status_code: str
    reason: str | None = None
    average_response_ms: float | None = None


@dataclass(frozen=True)
class DocumentStatus:
    status: str
    received_at: datetime | None = None
    protocol: str | None = None
    xml: str | None = None


@dataclass(frozen=True)
class CertificateInfo:
    exists: bool
    expires_at: datetime | None = None
    subject: str | None = None
    issuer: str | None = None

    def days_until_expiry(self, now: datetime) -> int | None:
        if self.expires_at is None:
            return None
        return int((self.expires_at - now).total_seconds() // 86_400)


class FiscalClient:
    """Fiscal operations for one owner (company).

    Args:
        owner_id: Company the documents belong to
        transport: Transport bound to the fiscal gateway
        contingency: The owner's contingency state machine
        retry: Retry policy for gateway calls
        cancellation_window: How long after issuance cancellation is allowed
        uf: Default state code for the service-status probe
        clock: Returns an aware UTC ``datetime``
    """

    def __init__(
        self,
        owner_id: str,
        transport: TransportClient,
        contingency: ContingencyStateMachine,
        *,
        retry: RetryPolicy | None = None,
        cancellation_window: timedelta = DEFAULT_CANCELLATION_WINDOW,
        uf: str | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.owner_id = owner_id
        self.transport = transport
        self.contingency = contingency
        self.retry = retry or RetryPolicy()
        self.cancellation_window = cancellation_window
        self.uf = uf
        self._clock = clock

    async def _invoke(self, action: str, endpoint: str = "/nfe", **body: Any) -> dict[str, Any]:
        request = {"action": action, "ownerId": self.owner_id, **body}
        payload = await self.retry.run(lambda: self.transport.post(endpoint, json=request))
        return payload if isinstance(payload, dict) else {}

    # ── Documents ────────────────────────────────────────────────

    async def issue(self, document: dict[str, Any]) -> FiscalResponse:
        """Submit a document for authorization, or tag it in contingency."""
        status = self.contingency.status()
        if status.active:
            return self._issue_in_contingency(document, status)

        response = FiscalResponse.from_payload(await self._invoke("emitir", nfe=document))
        logger.info(
            "fiscal.issue",
            owner_id=self.owner_id,
            success=response.success,
            status_code=response.status_code,
            access_key=response.access_key,
        )
        return response

    def _issue_in_contingency(self, document: dict[str, Any], status: ContingencyStatus) -> FiscalResponse:
        logger.warning(
            "fiscal.issue_in_contingency",
            owner_id=self.owner_id,
            contingency_type=status.contingency_type.value if status.contingency_type else None,
        )
        return FiscalResponse(
            success=True,
            access_key=document.get("chave"),
            reason=f"issued in contingency ({status.contingency_type.value}); pending transmission",
            contingency_type=status.contingency_type,
        )

    async def cancel(
        self,
        access_key: str,
        justification: str,
        *,
        issued_at: datetime | None = None,
    ) -> FiscalResponse:
        """Cancel an authorized document within the cancellation window.

        Raises:
            ValidationError: ``issued_at`` is a naive datetime
            CancellationWindowExpired: ``issued_at`` is older than the window
        """
        if issued_at is not None:
            if issued_at.tzinfo is None:
                raise ValidationError(
                    "issued_at must be timezone-aware",
                    field="issued_at",
                    value=issued_at.isoformat(),
                )
            elapsed = self._clock() - issued_at
            if elapsed > self.cancellation_window:
                hours = self.cancellation_window.total_seconds() / 3600
                raise CancellationWindowExpired(
                    f"cancellation window of {hours:g}h exceeded",
                    field="issued_at",
                    value=issued_at.isoformat(),
                ).with_context(provider=HEALTH_NAME, operation="cancelar")

        payload = await self._invoke("cancelar", chaveAcesso=access_key, justificativa=justification)
        response = FiscalResponse.from_payload(payload)
        logger.info(
            "fiscal.cancel",
            owner_id=self.owner_id,
            access_key=access_key,
            success=response.success,
            status_code=response.status_code,
        )
        return response

    async def correction_letter(
        self,
        access_key: str,
        correction: str,
        sequence: int | None = None,
    ) -> FiscalResponse:
        if not correction.strip():
            raise ValidationError("correction text must not be empty", field="correction")
        payload = await self._invoke(
            "carta_correcao",
            chaveAcesso=access_key,
            correcao=correction,
            sequencia=sequence,
        )
        return FiscalResponse.from_payload(payload)

    async def query(self, access_key: str) -> DocumentStatus:
        payload = await self._invoke("consultar", chaveAcesso=access_key)
        return DocumentStatus(
            status=str(payload.get("status", "")),
            received_at=_parse_datetime(payload.get("dataRecebimento")),
            protocol=payload.get("protocoloAutorizacao"),
            xml=payload.get("xml"),
        )

    # ── Service status / contingency ─────────────────────────────

    async def service_status(self, uf: str | None = None) -> ServiceStatus:
        """Probe the authority. Status code ``107`` means online."""
        payload = await self._invoke("status_servico", uf=uf or self.uf)
        code = str(payload.get("status", ""))
        return ServiceStatus(
            online=code == SERVICE_ONLINE,
            status_code=code,
            reason=payload.get("motivo"),
            average_response_ms=payload.get("tempoMedio"),
        )

    async def probe_and_enable(
        self,
        contingency_type: ContingencyType | str = ContingencyType.SVC_AN,
        reason: str = "service offline",
        *,
        uf: str | None = None,
    ) -> ServiceStatus:
        """Probe the authority and enter contingency if it is offline.

        An unreachable gateway counts as offline.
        """
        status = await self.probe_status_quietly(uf)
        if not status.online:
            self.contingency.enable(contingency_type, reason)
        return status

    # ── Certificate / health ─────────────────────────────────────

    async def certificate_info(self) -> CertificateInfo:
        payload = await self._invoke("info", endpoint="/certificate")
        if not payload.get("exists"):
            return CertificateInfo(exists=False)
        return CertificateInfo(
            exists=True,
            expires_at=_parse_datetime(payload.get("expiresAt")),
            subject=payload.get("subject"),
            issuer=payload.get("issuer"),
        )

    async def upload_certificate(self, content: bytes, password: str | SecretValue) -> CertificateInfo:
        """Store a PKCS#12 certificate on the gateway.

        Raises:
            ValidationError: the gateway rejected the file or the password
        """
        if not content:
            raise ValidationError("certificate file is empty", field="certificate")
        payload = await self._invoke(
            "upload",
            endpoint="/certificate",
            certificate=base64.b64encode(content).decode("ascii"),
            password=reveal(to_secret(password)),
        )
        if payload.get("valid") is not True:
            raise ValidationError(
                payload.get("error") or "invalid certificate",
                field="certificate",
            ).with_context(provider=HEALTH_NAME, operation="upload")

        info = CertificateInfo(
            exists=True,
            expires_at=_parse_datetime(payload.get("expiresAt")),
            subject=payload.get("subject"),
            issuer=payload.get("issuer"),
        )
        logger.info(
            "fiscal.certificate_uploaded",
            owner_id=self.owner_id,
            size=len(content),
            expires_at=info.expires_at.isoformat() if info.expires_at else None,
        )
        return info

    async def validate_certificate_password(self, password: str | SecretValue) -> bool:
        """Whether ``password`` opens the stored certificate.

        A gateway rejection reads as ``False``; an outage still raises.
        """
        try:
            payload = await self._invoke(
                "validate_password",
                endpoint="/certificate",
                password=reveal(to_secret(password)),
            )
        except ClientError as e:
            logger.info("fiscal.certificate_password_rejected", owner_id=self.owner_id, status=e.http_status)
            return False
        return payload.get("valid") is True

    async def generate_document_pdf(self, access_key: str) -> str | None:
        """Render the printable document (DANFE) and return its URL, or None."""
        payload = await self._invoke("gerar", endpoint="/danfe", chaveAcesso=access_key)
        url = payload.get("url")
        return url if isinstance(url, str) and url else None

    async def health(self) -> IntegrationHealth:
        now = self._clock()
        certificate = await self.certificate_info()
        if not certificate.exists:
            return IntegrationHealth(
                name=HEALTH_NAME,
                status="disconnected",
                error="digital certificate not configured",
            )

        days = certificate.days_until_expiry(now)
        if days is not None and days <= 0:
            return IntegrationHealth(
                name=HEALTH_NAME,
                status="error",
                error="digital certificate expired",
                expires_at=certificate.expires_at,
                days_until_expiry=days,
            )
        if days is not None and days <= EXPIRY_WARNING_DAYS:
            return IntegrationHealth(
                name=HEALTH_NAME,
                status="expiring",
                expires_at=certificate.expires_at,
                days_until_expiry=days,
            )

        service = await self.probe_status_quietly()
        if not service.online:
            contingency = self.contingency.status()
            if contingency.active:
                return IntegrationHealth(
                    name=HEALTH_NAME,
                    status="connected",
                    error=f"contingency mode active: {contingency.contingency_type.value}",
                    last_sync=now,
                    details={"contingency": contingency.to_dict()},
                )
            return IntegrationHealth(
                name=HEALTH_NAME,
                status="error",
                error="fiscal service offline",
                last_sync=now,
            )

        return IntegrationHealth(
            name=HEALTH_NAME,
            status="connected",
            last_sync=now,
            expires_at=certificate.expires_at,
            days_until_expiry=days,
        )

    async def probe_status_quietly(self, uf: str | None = None) -> ServiceStatus:
        try:
            return await self.service_status(uf)
        except IntegrationUnavailable as e:
            return ServiceStatus(online=False, status_code="UNAVAILABLE", reason=str(e))


__all__ = [
    "SERVICE_ONLINE",
    "DEFAULT_CANCELLATION_WINDOW",
    "FiscalResponse",
    "ServiceStatus",
    "DocumentStatus",
    "CertificateInfo",
    "FiscalClient",
]
