"""
Message Composer

Builds uniquely correlated test messages: a random payload token and a
random value under the single fixed property key.
"""

import uuid
from typing import Tuple

from ..models.message import PROPERTY_KEY, TestMessage


def _token() -> str:
    return str(uuid.uuid4())


def compose_outbound() -> Tuple[TestMessage, str, str]:
    """
    Compose a device-to-cloud message.

    Returns:
        (message, payload, property value)
    """
    payload = _token()
    p1_value = _token()

    message = TestMessage(
        payload=payload.encode('utf-8'),
        properties={PROPERTY_KEY: p1_value},
    )
    return message, payload, p1_value


def compose_inbound() -> Tuple[TestMessage, str, str, str]:
    """
    Compose a cloud-to-device message carrying a message id.

    Returns:
        (message, payload, message id, property value)
    """
    payload = _token()
    message_id = _token()
    p1_value = _token()

    message = TestMessage(
        payload=payload.encode('utf-8'),
        properties={PROPERTY_KEY: p1_value},
        message_id=message_id,
    )
    return message, payload, message_id, p1_value
