"""
HTTP client for the ux4iot relay.

Requests sessions, grants, physical subscriptions, last values and device
actions. Every session-scoped call carries the current session id in the
``sessionId`` header.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Optional, Union
from urllib.parse import quote

import httpx

from ..config import Ux4iotConfig
from ..core.constants import SESSION_HEADER, SHARED_ACCESS_KEY_HEADER
from ..core.errors import GatewayError, PreconditionError
from ..core.types import (
    DirectMethodParams,
    GrantRequest,
    GrantResponse,
    IoTHubResponse,
    LastValue,
    SubscriptionDescriptor,
    SubscriptionType,
)

logger = logging.getLogger(__name__)

DEV_MODE_WARNING = (
    "ux4iot is running in development mode with an admin connection string. "
    "Never use the admin connection string in production; provide a "
    "grant_request_function instead."
)


class GatewayClient:
    """
    HTTP client for the ux4iot relay.

    Usage:
        client = GatewayClient(Ux4iotConfig(admin_connection_string="HostName=...;Key=..."))
        session_id = await client.create_session()
        client.set_session_id(session_id)
        value = await client.get_last_value(descriptor)
    """

    def __init__(self, config: Ux4iotConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize gateway client.

        Args:
            config: Client configuration (URL, credentials, timeouts)
            transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests
        """
        self.config = config
        self.endpoint = config.endpoint
        self.session_id: Optional[str] = None
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        if config.dev_mode:
            logger.warning(DEV_MODE_WARNING)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            headers = {}
            if self.config.shared_access_key:
                headers[SHARED_ACCESS_KEY_HEADER] = self.config.shared_access_key
            self._client = httpx.AsyncClient(
                base_url=self.endpoint,
                headers=headers,
                timeout=self.config.request_timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def set_session_id(self, session_id: str) -> None:
        logger.info(f"Update sessionId to {session_id}")
        self.session_id = session_id

    def _require_session(self) -> str:
        if not self.session_id:
            raise PreconditionError()
        return self.session_id

    def socket_url(self, session_id: str) -> str:
        return f"{self.endpoint}?sessionId={session_id}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        session_id: Optional[str] = None,
    ) -> httpx.Response:
        """
        Send a request to the relay.

        Raises:
            GatewayError: On transport failure or a non-2xx response
        """
        client = await self._get_client()
        headers = {SESSION_HEADER: session_id} if session_id else None

        try:
            response = await client.request(method, path, json=json, headers=headers)
        except httpx.RequestError as e:
            raise GatewayError(endpoint=path, status_code=0, message=str(e))

        if not response.is_success:
            raise GatewayError(
                endpoint=path,
                status_code=response.status_code,
                message=response.text,
                body=_decode(response),
            )
        return response

    # === Session ===

    async def create_session(self) -> str:
        """Request a new realtime session id."""
        response = await self._request("POST", "/session")
        data = _decode(response)
        session_id = data.get("sessionId") if isinstance(data, dict) else None
        if not session_id:
            raise GatewayError(endpoint="/session", status_code=response.status_code, message="No sessionId in response")
        return session_id

    # === Grants ===

    async def request_grant(self, grant: GrantRequest) -> Union[GrantResponse, str]:
        """
        Ask for a grant in the current session.

        Uses the configured grant request function, or the relay's own
        ``/grants`` endpoint in development mode. Failures of a custom grant
        request function are answered with ``error``.
        """
        session_id = self._require_session()
        grant = grant.with_session(session_id)

        request_fn = self.config.grant_request_function
        if request_fn is None:
            return await self.default_grant_request(grant)

        try:
            response = request_fn(grant)
            if inspect.isawaitable(response):
                response = await response
        except Exception as e:
            logger.warning(f"Grant request function failed for {grant.type.value} on {grant.device_id}: {e}", exc_info=True)
            return GrantResponse.ERROR
        return response

    async def default_grant_request(self, grant: GrantRequest) -> GrantResponse:
        """Grant request against the relay with the shared access key"""
        try:
            await self._request("PUT", "/grants", json=grant.to_wire())
        except GatewayError as e:
            if e.status_code == 401:
                return GrantResponse.UNAUTHORIZED
            if e.status_code == 403:
                return GrantResponse.FORBIDDEN
            logger.debug(f"Grant request failed: {e}")
            return GrantResponse.ERROR
        return GrantResponse.GRANTED

    # === Subscriptions ===

    async def subscribe(self, descriptor: SubscriptionDescriptor) -> None:
        self._require_session()
        await self._request("PUT", "/subscription", json=descriptor.to_wire(), session_id=descriptor.session_id)
        logger.debug(f"Subscribed {descriptor.type.value} for {descriptor.device_id}")

    async def unsubscribe(self, descriptor: SubscriptionDescriptor) -> None:
        self._require_session()
        await self._request("DELETE", "/subscription", json=descriptor.to_wire(), session_id=descriptor.session_id)
        logger.debug(f"Unsubscribed {descriptor.type.value} for {descriptor.device_id}")

    async def get_last_value(self, descriptor: SubscriptionDescriptor) -> LastValue:
        """
        Fetch the last known value for a descriptor.

        D2C messages are not stored by the relay; they get an empty
        placeholder without a request.
        """
        session_id = self._require_session()
        device = quote(descriptor.device_id, safe="")

        if descriptor.type is SubscriptionType.TELEMETRY:
            path = f"/lastValue/{device}/{quote(descriptor.telemetry_key or '', safe='')}"
        elif descriptor.type is SubscriptionType.DEVICE_TWIN:
            path = f"/deviceTwin/{device}"
        elif descriptor.type is SubscriptionType.CONNECTION_STATE:
            path = f"/connectionState/{device}"
        else:
            return LastValue(device_id=descriptor.device_id, data={})

        response = await self._request("GET", path, session_id=session_id)
        data = _decode(response)
        if not isinstance(data, dict):
            return LastValue(device_id=descriptor.device_id, data=data)
        data.setdefault("deviceId", descriptor.device_id)
        return LastValue.model_validate(data)

    # === Device actions ===

    async def invoke_direct_method(
        self,
        device_id: str,
        params: Union[DirectMethodParams, dict[str, Any]],
    ) -> Optional[IoTHubResponse]:
        session_id = self._require_session()
        if not isinstance(params, DirectMethodParams):
            params = DirectMethodParams.model_validate(params)

        response = await self._request(
            "POST",
            "/directMethod",
            json={"deviceId": device_id, "methodParams": params.to_wire()},
            session_id=session_id,
        )
        return _iothub_response(response)

    async def patch_desired_properties(self, device_id: str, patch: dict[str, Any]) -> Optional[IoTHubResponse]:
        session_id = self._require_session()
        response = await self._request(
            "PATCH",
            "/deviceTwinDesiredProperties",
            json={"deviceId": device_id, "desiredPropertyPatch": patch},
            session_id=session_id,
        )
        return _iothub_response(response)


def _decode(response: httpx.Response) -> Any:
    """Decode a JSON body, falling back to text"""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _iothub_response(response: httpx.Response) -> Optional[IoTHubResponse]:
    data = _decode(response)
    if data is None:
        return None
    if isinstance(data, dict):
        return IoTHubResponse.model_validate(data)
    return IoTHubResponse(payload=data)
