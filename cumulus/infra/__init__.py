"""Internal machinery: signed XML/HTTP transport."""

from .http import (
    ApiKeyAuth,
    CloudStackTransport,
    ProviderError,
    parse_document,
    sign,
)

__all__ = [
    "ApiKeyAuth",
    "CloudStackTransport",
    "ProviderError",
    "parse_document",
    "sign",
]
