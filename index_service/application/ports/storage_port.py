from abc import ABC, abstractmethod
from typing import Optional

class StorageError(Exception):
    """Base exception for object storage errors."""
    pass

class ObjectNotFoundError(StorageError):
    """Raised when the requested key does not exist in the bucket."""
    pass

class StoragePort(ABC):
    """
    Interface (Port) over an opaque get/put object store.
    """

    @abstractmethod
    def get_object(self, bucket: str, key: str) -> bytes:
        """
        Downloads an object.

        Args:
            bucket: Bucket name.
            key: Object key.

        Returns:
            The raw object bytes.

        Raises:
            ObjectNotFoundError: If the key does not exist.
            StorageError: For any other storage failure.
        """
        pass

    @abstractmethod
    def put_object(self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Uploads an object, replacing any existing one under the same key.

        Returns:
            The key that was written.

        Raises:
            StorageError: If the upload fails.
        """
        pass

    @abstractmethod
    def object_exists(self, bucket: str, key: str) -> bool:
        pass

    @abstractmethod
    def delete_object(self, bucket: str, key: str) -> None:
        pass
