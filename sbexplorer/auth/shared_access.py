"""Shared access signature generation for Service Bus REST calls.

Parses namespace connection strings and signs resource URIs with
HMAC-SHA256, producing ``SharedAccessSignature`` authorization values.
"""

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import quote

from sbexplorer.auth.exceptions import InvalidConnectionStringError
from sbexplorer.servicebus.addressing import canonical_namespace


DEFAULT_VALIDITY_SECONDS = 3600

# Characters left unescaped by JavaScript's encodeURIComponent, which the
# broker expects in the signed resource string
_URI_SAFE = "-_.!~*'()"


@dataclass(frozen=True)
class ConnectionString:
    """Parsed namespace connection string."""

    endpoint: str
    key_name: str
    key: str
    entity_path: Optional[str] = None
    raw: str = ""

    @property
    def namespace(self) -> str:
        """Canonical namespace the endpoint points at."""
        return canonical_namespace(self.endpoint)

    def __repr__(self) -> str:
        return f"ConnectionString(endpoint={self.endpoint!r}, key_name={self.key_name!r})"


def parse_connection_string(connection_string: str) -> ConnectionString:
    """Parse a ``Key=Value;`` connection string.

    Args:
        connection_string: e.g. ``Endpoint=sb://ns.servicebus.windows.net/;
            SharedAccessKeyName=Root;SharedAccessKey=...``

    Returns:
        Parsed ConnectionString

    Raises:
        InvalidConnectionStringError: If endpoint, key name or key is missing
    """
    if not connection_string or not connection_string.strip():
        raise InvalidConnectionStringError("connection string is empty")

    parts: Dict[str, str] = {}
    for part in connection_string.split(";"):
        key, sep, value = part.partition("=")
        if sep and key.strip():
            # Keys are base64 and may themselves end in '='
            parts[key.strip().lower()] = value.strip()

    endpoint = parts.get("endpoint")
    key_name = parts.get("sharedaccesskeyname")
    key = parts.get("sharedaccesskey")

    if not endpoint:
        raise InvalidConnectionStringError("missing Endpoint")
    if not key_name or not key:
        raise InvalidConnectionStringError(
            "connection string must contain SharedAccessKeyName and SharedAccessKey"
        )

    return ConnectionString(
        endpoint=endpoint,
        key_name=key_name,
        key=key,
        entity_path=parts.get("entitypath"),
        raw=connection_string.strip(),
    )


def looks_like_connection_string(text: str) -> bool:
    """Whether user input is a connection string rather than a namespace name."""
    lowered = text.lower()
    return "endpoint=" in lowered and "sharedaccesskey" in lowered


def generate_sas_token(
    resource_uri: str,
    key_name: str,
    key: str,
    validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
    now: Optional[float] = None,
) -> str:
    """Sign a resource URI.

    The string to sign is ``<url-encoded uri>\\n<expiry unix seconds>``.

    Args:
        resource_uri: URI the token grants access to
        key_name: Shared access policy name
        key: Shared access key (used as raw UTF-8 bytes)
        validity_seconds: Lifetime from ``now``
        now: Current unix time, defaults to ``time.time()``

    Returns:
        ``SharedAccessSignature sr=...&sig=...&se=...&skn=...``
    """
    issued_at = time.time() if now is None else now
    expiry = int(issued_at) + validity_seconds
    encoded_uri = quote(resource_uri, safe=_URI_SAFE)
    string_to_sign = f"{encoded_uri}\n{expiry}"

    signature = base64.b64encode(
        hmac.new(
            key.encode("utf-8"),
            string_to_sign.encode("utf-8"),
            hashlib.sha256,
        ).digest()
    ).decode("utf-8")

    encoded_signature = quote(signature, safe=_URI_SAFE)
    return (
        f"SharedAccessSignature sr={encoded_uri}&sig={encoded_signature}"
        f"&se={expiry}&skn={key_name}"
    )
