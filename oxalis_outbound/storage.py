"""Blob storage access for outbound documents and their receipts."""
import time
from contextlib import contextmanager

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient

from oxalis_outbound.errors import BackendTransientError, DocumentNotFoundError
from oxalis_outbound.logging_conf import logger
from oxalis_outbound.queue.models import DocumentReference


class AzureBlobBackend:
    """Thin get/put/delete/copy layer over a BlobServiceClient.

    Raises DocumentNotFoundError for missing blobs and BackendTransientError
    for every other service failure.
    """

    def __init__(self, client: BlobServiceClient, copy_wait: float = 30.0):
        self.client = client
        self.copy_wait = copy_wait

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "AzureBlobBackend":
        return cls(BlobServiceClient.from_connection_string(connection_string))

    def get(self, container: str, path: str) -> bytes:
        blob = self.client.get_blob_client(container, path)
        with _translate(f"get {container}/{path}"):
            return blob.download_blob().readall()

    def put(self, container: str, path: str, data: bytes) -> None:
        blob = self.client.get_blob_client(container, path)
        with _translate(f"put {container}/{path}"):
            blob.upload_blob(data, overwrite=True)

    def delete(self, container: str, path: str) -> None:
        blob = self.client.get_blob_client(container, path)
        with _translate(f"delete {container}/{path}"):
            blob.delete_blob()

    def copy(self, src_container: str, path: str, dst_container: str) -> None:
        source = self.client.get_blob_client(src_container, path)
        target = self.client.get_blob_client(dst_container, path)
        with _translate(f"copy {src_container}/{path} to {dst_container}"):
            # A missing source fails here rather than as a failed async copy
            source.get_blob_properties()
            status = target.start_copy_from_url(source.url).get("copy_status")
            deadline = time.monotonic() + self.copy_wait
            while status == "pending":
                if time.monotonic() >= deadline:
                    raise BackendTransientError(f"Copy of {src_container}/{path} still pending")
                time.sleep(0.5)
                status = target.get_blob_properties().copy.status
        if status != "success":
            raise BackendTransientError(f"Copy of {src_container}/{path} ended with status {status}")


@contextmanager
def _translate(operation: str):
    """Map Azure SDK exceptions onto the daemon's error taxonomy."""
    try:
        yield
    except ResourceNotFoundError as e:
        raise DocumentNotFoundError(f"Not found during {operation}: {e}") from e
    except AzureError as e:
        raise BackendTransientError(f"Storage failure during {operation}: {e}") from e


class DocumentStore:
    """Fetches, archives and disposes of outbound documents."""

    def __init__(self, backend):
        self.backend = backend

    def fetch(self, ref: DocumentReference) -> bytes:
        logger.info(f"Downloading from blob storage: {ref}")
        data = self.backend.get(ref.container, ref.path)
        logger.debug(f"Downloaded {len(data)} bytes from {ref}")
        return data

    def store(self, container: str, name: str, data: bytes) -> None:
        logger.info(f"Uploading {name} to {container} ({len(data)} bytes)")
        self.backend.put(container, name, data)

    def delete(self, ref: DocumentReference) -> None:
        logger.info(f"Deleting from blob storage: {ref}")
        self.backend.delete(ref.container, ref.path)

    def move(self, ref: DocumentReference, target_container: str) -> None:
        """Copy then delete. A failed delete leaves a duplicate, never a loss."""
        logger.info(f"Copying {ref} to {target_container}")
        self.backend.copy(ref.container, ref.path, target_container)
        logger.info(f"Deleting original from {ref.container}: {ref.path}")
        self.backend.delete(ref.container, ref.path)
