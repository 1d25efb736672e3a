class ProviderError(Exception):
    """Raised when an OCR provider cannot produce a result."""


class ProviderTimeoutError(ProviderError):
    """Raised when the provider call exceeds its timeout."""


class ProviderNetworkError(ProviderError):
    """Raised when the provider call fails due to network/infrastructure issues."""


class MalformedProviderOutputError(ProviderError):
    """Raised when the provider response cannot be parsed into fields."""


class UnsupportedContentError(ProviderError):
    """Raised when a provider cannot read the given MIME type."""
