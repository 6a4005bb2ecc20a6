class AppDropError(Exception):
    """Base exception for appdrop errors."""
    pass


# Introspection: always recovered by the caller, never shown as a hard failure.

class IntrospectionError(AppDropError):
    pass


class MalformedArchive(IntrospectionError):
    """Raised when a buffer is not a readable ZIP container."""
    pass


class EntryNotFound(IntrospectionError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Archive entry {path!r} not found")


class ManifestNotFound(IntrospectionError):
    pass


class BundleNotFound(IntrospectionError):
    pass


class InvalidPropertyList(IntrospectionError):
    pass


# Store

class StoreError(AppDropError):
    pass


class ArtifactNotFound(StoreError):
    def __init__(self, share_id: str):
        self.share_id = share_id
        super().__init__(f"Artifact {share_id} not found")


class InvalidIdentifier(StoreError):
    """Raised for identifiers that could escape the storage root."""

    def __init__(self, share_id: str):
        self.share_id = share_id
        super().__init__(f"Invalid share identifier {share_id!r}")


class InvalidFileName(StoreError):
    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(f"Unusable payload file name {file_name!r}")


class StorageFailure(StoreError):
    pass


class RateLimited(AppDropError):
    def __init__(self, decision):
        self.decision = decision
        super().__init__(
            f"Rate limit of {decision.limit} exceeded, retry in {decision.retry_after}s"
        )
