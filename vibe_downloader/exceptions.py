"""
Defines custom exceptions used throughout the application.

These exceptions allow for more specific error handling than built-in exceptions.
"""

class DownloadCancelledError(Exception):
    """Custom exception for cancelled downloads."""
    pass

class BatchValidationError(ValueError):
    """Raised when pasted batch text contains no usable URL."""
    pass

class MetadataFetchError(Exception):
    """
    Raised when yt-dlp cannot describe a URL.

    Attributes:
        category: The ErrorCategory the raw failure text was classified into.
        raw_error: The original error text reported by yt-dlp.
    """
    def __init__(self, message: str, category=None, raw_error: str = ''):
        super().__init__(message)
        self.category = category
        self.raw_error = raw_error

class MediaFetchError(Exception):
    """Raised when a media download fails or cannot be started."""
    pass

class DownloadBusyError(RuntimeError):
    """Raised when a download is requested while another one is in flight."""
    pass

class QueueStateError(RuntimeError):
    """Raised when a queue operation is not allowed in the entry's current state."""
    pass

class RouterBusyError(RuntimeError):
    """Raised when a second batch item tries to claim the progress stream."""
    pass

class CookieError(Exception):
    """Raised when a cookie file cannot be saved or removed."""
    pass
