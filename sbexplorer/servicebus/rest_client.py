"""
REST Fallback Client

Peek-lock, delete and unlock against the broker's HTTP surface. Used when
the client protocol cannot lock a message that a peek has shown to exist.

Author: SBExplorer Contributors
Date: 2026-01-18
"""

import json
from typing import Any, Dict, Optional

import httpx

from sbexplorer.auth.credentials import CredentialResolver

from .addressing import peek_lock_url
from .exceptions import BrokerProtocolError, OperationTimeoutError
from .logging_utils import StructuredLogger
from .models import RestLockReceipt


logger = StructuredLogger('sbexplorer.servicebus.rest_client')

# Response headers that are transport or broker metadata, not user properties
STANDARD_HEADERS = frozenset({
    'brokerproperties',
    'location',
    'content-type',
    'content-length',
    'date',
    'server',
    'transfer-encoding',
    'strict-transport-security',
    'connection',
})


class RestFallbackClient:
    """
    Async REST client for single-message lock operations.

    Every call resolves its own ``Authorization`` header.

    Args:
        resolver: Produces shared access or bearer authorization values
        timeout_seconds: Per-request timeout
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
    """

    def __init__(
        self,
        resolver: CredentialResolver,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._resolver = resolver
        self._timeout_seconds = timeout_seconds
        self._client = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)

    async def peek_lock(self, namespace: str, entity_path: str) -> Optional[RestLockReceipt]:
        """
        Lock the message at the head of ``entity_path``.

        Returns:
            RestLockReceipt, or None when the entity is empty

        Raises:
            BrokerProtocolError: On a non-success status or malformed properties
            OperationTimeoutError: If the request times out
        """
        namespace = self._resolver.canonical(namespace)
        url = peek_lock_url(namespace, entity_path)
        logger.debug(f"REST peek-lock from {url}", url=url)

        response = await self._send(
            "peek_lock",
            "POST",
            url,
            namespace,
            headers={"Content-Type": "application/json"},
        )
        if response.status_code == 204:
            return None
        self._raise_for_status("peek_lock", response)

        broker_properties = self._parse_broker_properties(response.headers.get("BrokerProperties"))
        location = response.headers.get("Location")
        if not location:
            raise BrokerProtocolError(
                "peek_lock",
                status_code=response.status_code,
                message="REST peek_lock response has no Location header",
            )

        receipt = RestLockReceipt(
            location=location,
            broker_properties=broker_properties,
            user_properties=self._user_properties(response.headers),
            raw_body=response.content,
        )
        logger.log_message_operation(
            "rest_peek_lock", entity_path, receipt.sequence_number, receipt.message_id
        )
        return receipt

    async def delete_message(self, namespace: str, location: str) -> None:
        """Delete the locked message at ``location``."""
        namespace = self._resolver.canonical(namespace)
        response = await self._send("delete", "DELETE", location, namespace)
        self._raise_for_status("delete", response)
        logger.debug(f"REST delete succeeded for {location}", location=location)

    async def unlock_message(self, namespace: str, location: str) -> None:
        """Release the lock at ``location``."""
        namespace = self._resolver.canonical(namespace)
        response = await self._send("unlock", "PUT", location, namespace)
        self._raise_for_status("unlock", response)
        logger.debug(f"REST unlock succeeded for {location}", location=location)

    async def close(self) -> None:
        await self._client.aclose()

    async def _send(
        self,
        operation: str,
        method: str,
        url: str,
        namespace: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        request_headers = {"Authorization": await self._resolver.auth_header_for(namespace)}
        if headers:
            request_headers.update(headers)
        try:
            return await self._client.request(method, url, headers=request_headers)
        except httpx.TimeoutException as e:
            logger.error(
                f"REST {operation} timed out: {e}",
                operation_name=operation,
                timeout_seconds=self._timeout_seconds
            )
            raise OperationTimeoutError(f"rest_{operation}", self._timeout_seconds) from e

    @staticmethod
    def _raise_for_status(operation: str, response: httpx.Response) -> None:
        if not response.is_success:
            raise BrokerProtocolError(
                operation,
                status_code=response.status_code,
                body=response.text,
            )

    @staticmethod
    def _parse_broker_properties(header: Optional[str]) -> Dict[str, Any]:
        if not header:
            return {}
        try:
            properties = json.loads(header)
        except json.JSONDecodeError as e:
            raise BrokerProtocolError(
                "peek_lock",
                body=header,
                message=f"REST peek_lock returned malformed BrokerProperties: {e}",
            ) from e
        if not isinstance(properties, dict):
            raise BrokerProtocolError(
                "peek_lock",
                body=header,
                message="REST peek_lock BrokerProperties is not a JSON object",
            )
        return properties

    @staticmethod
    def _user_properties(headers: httpx.Headers) -> Dict[str, Any]:
        properties: Dict[str, Any] = {}
        for key, value in headers.items():
            if key.lower() in STANDARD_HEADERS:
                continue
            try:
                properties[key] = json.loads(value)
            except json.JSONDecodeError:
                properties[key] = value
        return properties
