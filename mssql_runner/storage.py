"""
Backup container access through azure-storage-blob
"""

import os
import logging

from azure.storage.blob import BlobServiceClient

logger = logging.getLogger(__name__)


class BlobStore:
    """The hand-off container between the snapshot and the local restore runner"""

    def __init__(self, service_client, container):
        self.container = container
        self.container_client = service_client.get_container_client(container)

    @classmethod
    def from_config(cls, storage, credential):
        if storage.connection_string:
            service = BlobServiceClient.from_connection_string(storage.connection_string)
        else:
            service = BlobServiceClient(account_url=storage.account_url, credential=credential)
        return cls(service, storage.container)

    def exists(self, blob_name):
        """Look the artifact up by listing the container, matching the exact name"""
        for blob in self.container_client.list_blobs(name_starts_with=blob_name):
            if blob.name == blob_name:
                return True
        return False

    def download(self, blob_name, local_path):
        """Download to local_path, replacing any file already there; returns the byte count"""
        blob_client = self.container_client.get_blob_client(blob_name)
        with open(local_path, 'wb') as f:
            stream = blob_client.download_blob(max_concurrency=4)
            stream.readinto(f)
        size = os.path.getsize(local_path)
        logger.info(f"Downloaded {self.container}/{blob_name} to {local_path} ({size} bytes)")
        return size

    def delete(self, blob_name):
        self.container_client.delete_blob(blob_name)
        logger.info(f"Deleted remote artifact {self.container}/{blob_name}")
