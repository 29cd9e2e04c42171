"""Queue data models."""
import base64
import binascii
import json
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote, urlparse

from oxalis_outbound.errors import MalformedMessageError


@dataclass(frozen=True)
class QueueItem:
    """One message received from the outbound queue."""

    message_id: str
    pop_receipt: str  # Acknowledgment token, valid while the message is invisible
    content: str  # Base64-encoded JSON event
    dequeue_count: Optional[int] = None

    @classmethod
    def create(cls, message_id: str, pop_receipt: str, payload: dict, dequeue_count: Optional[int] = None):
        """Factory method to create a QueueItem carrying an encoded event payload."""
        content = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")
        return cls(
            message_id=message_id,
            pop_receipt=pop_receipt,
            content=content,
            dequeue_count=dequeue_count,
        )


@dataclass(frozen=True)
class DocumentReference:
    """Storage location of an outbound document."""

    container: str
    path: str

    @property
    def receipt_name(self) -> str:
        """Blob name of the evidence archived for this document."""
        return f"{self.path}_receipt.xml"

    @classmethod
    def from_url(cls, url: str) -> "DocumentReference":
        """
        Split a blob URL into container and path.

        Example: https://acct.blob.core.windows.net/outbound/2024/inv.xml
        gives container "outbound" and path "2024/inv.xml".
        """
        path = unquote(urlparse(url).path).lstrip("/")
        container, _, name = path.partition("/")
        if not container or not name:
            raise MalformedMessageError(f"URL does not name a container and blob: {url}")
        return cls(container=container, path=name)

    @classmethod
    def from_queue_item(cls, item: QueueItem) -> "DocumentReference":
        """Decode the base64 JSON event carried by a queue message."""
        try:
            event = json.loads(base64.b64decode(item.content, validate=True))
        except (binascii.Error, ValueError) as e:
            raise MalformedMessageError(f"Queue message {item.message_id} is not base64 JSON: {e}") from e

        url = None
        if isinstance(event, dict) and isinstance(event.get("data"), dict):
            url = event["data"].get("url")
        if not url or not isinstance(url, str):
            raise MalformedMessageError(f"Queue message {item.message_id} has no data.url")

        return cls.from_url(url)

    def __str__(self) -> str:
        return f"{self.container}/{self.path}"
