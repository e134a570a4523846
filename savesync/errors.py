class SaveSyncError(Exception):
    """Base class for reconciliation failures."""


class ScanError(SaveSyncError):
    """A ROM or save directory exists but could not be read."""

    def __init__(self, message, platform_key="", path=""):
        super().__init__(message)
        self.platform_key = platform_key
        self.path = path


class FetchError(SaveSyncError):
    """RomM could not be queried for one platform."""

    def __init__(self, message, platform_key=""):
        super().__init__(message)
        self.platform_key = platform_key


class CatalogUnavailableError(FetchError):
    """No platform list is available, neither from RomM nor from cache."""


class HashError(SaveSyncError):
    """A local file could not be read to compute its checksum."""


class OrphanError(SaveSyncError):
    """A sync was attempted for a save with no resolved ROM."""

    def __init__(self, message="orphan ROM"):
        super().__init__(message)


class TransferError(SaveSyncError):
    """Configuration or context needed for a transfer is missing."""


class SaveIOError(SaveSyncError, OSError):
    """Writing, backing up or re-timestamping a save failed."""
