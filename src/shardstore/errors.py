"""Error taxonomy shared by the store, normalizer, and dispatcher."""


class ShardStoreError(Exception):
    """Base exception for store and ingestion operations."""


class IOFailure(ShardStoreError):
    """Raised when a read, write, rename, or delete fails."""


class InvalidDigest(ShardStoreError, ValueError):
    """Raised when a digest is too short or contains non-hex characters."""


class UnsupportedFormat(ShardStoreError):
    """Raised when an upload cannot be decoded or its encoding is not accepted."""


class ObjectNotFound(ShardStoreError, LookupError):
    """Raised when no stored file exists for a digest."""
