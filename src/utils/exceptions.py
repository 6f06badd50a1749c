"""Custom exceptions for the video sync agent

This module defines the exception hierarchy for a sync cycle:
- Base exception for all sync errors
- Specific exceptions for configuration, catalog, download and persistence

All exceptions inherit from SyncAgentError to allow catching all sync-related
errors in a single except block when needed. None of them is allowed to stop
the scheduler loop; the agent turns them into published events.
"""


class SyncAgentError(Exception):
    """Base exception for all sync agent errors

    Use this to catch any error raised by a sync collaborator:
    ```python
    try:
        checkpoint = cursor_store.get()
    except SyncAgentError as e:
        logger.error("sync_failed", error=str(e))
    ```
    """

    pass


class ConfigurationError(SyncAgentError):
    """Invalid agent configuration

    Raised when:
    - interval_seconds is not a positive integer
    - output_folder is missing
    - Configuration file is missing, unreadable or fails validation

    Fatal at construction time, never raised by a running cycle.
    """

    pass


class CatalogError(SyncAgentError):
    """Catalog enumeration failed

    Raised when:
    - Catalog request fails (non-2xx status, connection error)
    - Catalog response cannot be parsed
    - Catalog call times out
    - Page limit reached before an empty page was returned

    The cycle fails and the checkpoint is left unchanged.
    """

    pass


class DownloadError(SyncAgentError):
    """Single item download failed

    Raised when:
    - HTTP request fails for one item
    - File exceeds the configured size limit
    - Destination cannot be written

    Recorded against the item; the cycle continues.
    """

    pass


class PersistenceError(SyncAgentError):
    """Checkpoint could not be read or written

    Raised when:
    - State file exists but is unreadable or corrupt
    - Atomic write of the state file fails

    The cycle is marked failed even if enumeration succeeded.
    """

    pass


class RetryableError(CatalogError):
    """Transient catalog failure (timeouts, 5xx, connection errors).

    Errors of this class are retried by the catalog client before they
    surface to the agent as a plain CatalogError.
    """

    pass
