"""Azure Storage queue backend."""
from typing import List, Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.queue import QueueClient

from oxalis_outbound.errors import BackendTransientError
from oxalis_outbound.logging_conf import logger
from oxalis_outbound.queue.models import QueueItem


class StorageQueue:
    """Receives and acknowledges messages on one Azure Storage queue."""

    def __init__(self, client: QueueClient, visibility_timeout: Optional[int] = None):
        self.client = client
        self.visibility_timeout = visibility_timeout

    @classmethod
    def from_connection_string(cls, connection_string: str, queue_name: str,
                               visibility_timeout: Optional[int] = None) -> "StorageQueue":
        # Message text is decoded by DocumentReference, not by the SDK
        client = QueueClient.from_connection_string(connection_string, queue_name)
        return cls(client, visibility_timeout)

    @property
    def name(self) -> str:
        return self.client.queue_name

    def dequeue_batch(self, max_items: int = 10) -> List[QueueItem]:
        """Return up to max_items messages, hidden from other consumers until acknowledged."""
        logger.debug(f"Polling {self.name} for up to {max_items} messages")
        kwargs = {"messages_per_page": max_items, "max_messages": max_items}
        if self.visibility_timeout:
            kwargs["visibility_timeout"] = self.visibility_timeout
        try:
            messages = self.client.receive_messages(**kwargs)
            return [
                QueueItem(
                    message_id=message.id,
                    pop_receipt=message.pop_receipt,
                    content=message.content,
                    dequeue_count=message.dequeue_count,
                )
                for message in messages
            ]
        except AzureError as e:
            raise BackendTransientError(f"Failed to receive from queue {self.name}: {e}") from e

    def mark_processed(self, item: QueueItem) -> None:
        """Acknowledge an item by deleting its message."""
        logger.info(f"Deleting queue message {item.message_id}")
        try:
            self.client.delete_message(item.message_id, item.pop_receipt)
        except ResourceNotFoundError as e:
            # Pop receipt expired: the message is visible again and will be redelivered
            raise BackendTransientError(f"Queue message {item.message_id} no longer held: {e}") from e
        except AzureError as e:
            raise BackendTransientError(f"Failed to delete queue message {item.message_id}: {e}") from e
