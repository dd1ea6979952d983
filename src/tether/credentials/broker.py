"""Clients for the server-side broker functions.

The broker is a set of server-side functions (``POST {broker_url}/{name}``
with a JSON ``action`` body) that hold client secrets the integration layer
must never see: the OAuth client secret for groupware, the aggregator's
client secret for open banking.
"""

from __future__ import annotations

from typing import Any

from tether.core.errors import AuthExpired, ClientError
from tether.core.logging import get_logger
from tether.core.secrets import SecretValue
from tether.credentials.models import TokenGrant
from tether.execution.retry import RetryPolicy
from tether.execution.transport import TransportClient

logger = get_logger(__name__)


class BrokerClient:
    """Invokes named broker functions through the retry policy."""

    def __init__(self, transport: TransportClient, *, retry: RetryPolicy | None = None):
        self.transport = transport
        self.retry = retry or RetryPolicy()

    async def invoke(self, function: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST ``body`` to ``/{function}`` and return the JSON object.

        Raises:
            ClientError: the broker rejected the request
            IntegrationUnavailable: the broker kept failing transiently
        """
        payload = await self.retry.run(lambda: self.transport.post(f"/{function}", json=body))
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise ClientError(
                f"broker function {function} returned a non-object payload",
            ).with_context(provider=self.transport.provider, operation=function)
        return payload

    async def aclose(self) -> None:
        await self.transport.aclose()


class OAuthBroker:
    """``CredentialBroker`` backed by an OAuth broker function.

    Broker rejections (4xx, revoked or unknown refresh token) become
    :class:`AuthExpired`; transient failures propagate unchanged.

    Example:
        broker = OAuthBroker(BrokerClient(transport), function="groupware-auth")
        grant = await broker.refresh(credential.refresh_token)
    """

    def __init__(self, client: BrokerClient, *, function: str):
        self.client = client
        self.function = function

    async def _call(self, action: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            return await self.client.invoke(self.function, {"action": action, **body})
        except ClientError as e:
            logger.warning(
                "broker.rejected",
                function=self.function,
                action=action,
                http_status=e.context.http_status,
            )
            raise AuthExpired(
                f"broker rejected {action}; re-authorization required",
                cause=e,
            ).with_context(provider=self.function, operation=action) from e

    async def exchange_code(self, code: str, redirect_uri: str | None, scopes: list[str]) -> TokenGrant:
        payload = await self._call(
            "exchange_code",
            {"code": code, "redirectUri": redirect_uri, "scopes": scopes},
        )
        return self._grant(payload, "exchange_code")

    async def refresh(self, refresh_token: SecretValue) -> TokenGrant:
        payload = await self._call("refresh_token", {"refreshToken": refresh_token.get_secret()})
        return self._grant(payload, "refresh_token")

    async def revoke(self, account_id: str) -> None:
        await self._call("revoke_token", {"accountId": account_id})

    def _grant(self, payload: dict[str, Any], action: str) -> TokenGrant:
        try:
            return TokenGrant.from_payload(payload)
        except (TypeError, ValueError) as e:
            raise AuthExpired(
                f"broker {action} returned no usable token",
                cause=e,
            ).with_context(provider=self.function, operation=action) from e


__all__ = ["BrokerClient", "OAuthBroker"]
