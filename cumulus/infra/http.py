from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote
from xml.etree import ElementTree

import httpx
from loguru import logger

from cumulus.core.exceptions import CumulusError

# ─── Errors ──────────────────────────────────────────────────────────


class ProviderError(CumulusError):
    """Remote API failure.

    ``status`` is the HTTP status code (0 when the request never got a
    response); ``error_code`` is the provider's own code when the error
    document carried one.
    """

    def __init__(self, status: int, message: str, error_code: int | None = None) -> None:
        self.status = status
        self.message = message
        self.error_code = error_code
        super().__init__(f"HTTP {status}: {message}")


# ─── Auth ────────────────────────────────────────────────────────────


def _encode(value: str) -> str:
    return quote(value, safe="*")


def sign(params: Mapping[str, str], secret_key: str) -> str:
    """Signature over the sorted, lower-cased query string (HMAC-SHA1, base64)."""
    query = "&".join(
        f"{key}={_encode(params[key])}"
        for key in sorted(params, key=str.lower)
    )
    digest = hmac.new(secret_key.encode(), query.lower().encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


class ApiKeyAuth:
    def __init__(self, api_key: str, secret_key: str) -> None:
        self._api_key = api_key
        self._secret_key = secret_key

    def signed(self, params: Mapping[str, str]) -> dict[str, str]:
        unsigned = {**params, "apiKey": self._api_key}
        return {**unsigned, "signature": sign(unsigned, self._secret_key)}


# ─── Parsing ─────────────────────────────────────────────────────────


def parse_document(body: bytes) -> ElementTree.Element:
    return ElementTree.fromstring(body)


def _error_details(body: bytes) -> tuple[str, int | None]:
    try:
        root = parse_document(body)
    except ElementTree.ParseError:
        return body.decode(errors="replace")[:500], None
    text = root.findtext(".//errortext") or body.decode(errors="replace")[:500]
    code = root.findtext(".//errorcode")
    return text, int(code) if code and code.strip().isdigit() else None


# ─── Client ──────────────────────────────────────────────────────────


class CloudStackTransport:
    """Signed XML/HTTP transport.

    Every action is a GET against the API endpoint with ``command`` set to
    the action name; the response body is parsed into an element tree.
    """

    def __init__(
        self,
        endpoint: str,
        auth: ApiKeyAuth,
        *,
        timeout: float = 30,
        client: httpx.Client | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._auth = auth
        self._client = client or httpx.Client(timeout=timeout)
        self._log = logger.bind(component="http")

    def invoke(self, action: str, params: Mapping[str, str] | None = None) -> ElementTree.Element:
        query = self._auth.signed({**(params or {}), "command": action})
        self._log.debug("{action} {params}", action=action, params=sorted(params or {}))
        try:
            resp = self._client.get(self._endpoint, params=query)
        except httpx.HTTPError as e:
            raise ProviderError(status=0, message=str(e)) from e

        if resp.status_code >= 400:
            message, code = _error_details(resp.content)
            self._log.warning(
                "HTTP {status} from {action}: {message}",
                status=resp.status_code, action=action, message=message,
            )
            raise ProviderError(status=resp.status_code, message=message, error_code=code)

        try:
            return parse_document(resp.content)
        except ElementTree.ParseError as e:
            raise ProviderError(status=resp.status_code, message=f"Malformed response: {e}") from e

    # ─── Lifecycle ───────────────────────────────────────────────────

    def close(self) -> None:
        self._log.debug("Closing HTTP session")
        self._client.close()

    def __enter__(self) -> CloudStackTransport:
        return self

    def __exit__(self, *_: Any) -> None:
        self.close()
