"""Object storage for generated images."""

from floragen.services.storage.object_storage import (
    ObjectStorage,
    ObjectStorageClient,
    generate_storage_path,
)

__all__ = ["ObjectStorage", "ObjectStorageClient", "generate_storage_path"]
