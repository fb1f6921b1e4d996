"""
Entity Addressing

Canonical namespace names, entity target construction and the paths used
by the REST surface.

Author: SBExplorer Contributors
Date: 2026-01-15
"""

import re
from typing import Optional
from urllib.parse import urlparse

from .exceptions import ConfigurationError
from .models import EntityTarget, QueueTarget, SubscriptionTarget


DEFAULT_NAMESPACE_SUFFIX = ".servicebus.windows.net"
DEAD_LETTER_SEGMENT = "$deadletterqueue"

_SCHEME_PATTERN = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)


def canonical_namespace(namespace: str, suffix: str = DEFAULT_NAMESPACE_SUFFIX) -> str:
    """
    Normalize a namespace to its hostname form.

    ``MyNs``, ``myns.servicebus.windows.net`` and
    ``sb://myns.servicebus.windows.net/`` all map to
    ``myns.servicebus.windows.net``.

    Args:
        namespace: Namespace name, hostname or endpoint URL
        suffix: Suffix appended to bare names

    Returns:
        Lower-cased hostname (with port if one was given)

    Raises:
        ConfigurationError: If the namespace is empty
    """
    text = (namespace or "").strip()
    if _SCHEME_PATTERN.match(text):
        text = urlparse(text).netloc
    text = text.strip("/").lower()
    if not text:
        raise ConfigurationError("namespace is empty")
    host = text.split(":", 1)[0]
    if "." not in host and host != "localhost":
        text = f"{text}{suffix.lower()}"
    return text


def resolve_target(
    queue_name: Optional[str] = None,
    topic_name: Optional[str] = None,
    subscription_name: Optional[str] = None,
) -> EntityTarget:
    """
    Build an entity target from loose caller input.

    Exactly one of ``queue_name`` or ``topic_name`` + ``subscription_name``
    must be given.

    Raises:
        ConfigurationError: On missing or contradictory input
    """
    if queue_name and (topic_name or subscription_name):
        raise ConfigurationError(
            "give either a queue or a topic and subscription, not both"
        )
    if queue_name:
        return QueueTarget(name=queue_name)
    if topic_name and subscription_name:
        return SubscriptionTarget(topic=topic_name, subscription=subscription_name)
    if topic_name:
        raise ConfigurationError(f"topic '{topic_name}' needs a subscription name")
    if subscription_name:
        raise ConfigurationError(f"subscription '{subscription_name}' needs a topic name")
    raise ConfigurationError(
        "either a queue name or both a topic name and a subscription name must be provided"
    )


def dead_letter_path(target: EntityTarget) -> str:
    """Path of the dead-letter sub-queue, as used by the REST surface."""
    return f"{target.entity_path}/{DEAD_LETTER_SEGMENT}"


def rest_base_url(namespace: str) -> str:
    """HTTPS base URL for a canonical namespace."""
    return f"https://{namespace}"


def peek_lock_url(namespace: str, entity_path: str) -> str:
    """URL that peek-locks the message at the head of ``entity_path``."""
    return f"{rest_base_url(namespace)}/{entity_path.strip('/')}/messages/head"
