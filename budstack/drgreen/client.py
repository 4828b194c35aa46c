"""Dr. Green API client.

One authenticated HTTP call per request():
- every call carries the tenant API key in `x-auth-apikey`
- non-GET calls with a body also carry `x-auth-signature`, computed over
  the exact body string that is sent
- GET calls are never signed

The client does not retry. Callers decide whether a failure is worth
retrying; read-only status checks should not hammer a rate-limited
upstream.

Example:
    async with DrGreenClient() as client:
        data = await client.request("/strains?country=ZAF", credentials)
"""

import json
from typing import Any, Literal

import httpx
import structlog
from pydantic import BaseModel, Field

from budstack.config import settings
from budstack.drgreen.signing import sign_payload
from budstack.errors import ExternalApiError, MissingCredentialsError, UpstreamLogicError

logger = structlog.get_logger(__name__)

API_KEY_HEADER = "x-auth-apikey"
SIGNATURE_HEADER = "x-auth-signature"

HttpMethod = Literal["GET", "POST", "PATCH", "DELETE"]


class DrGreenCredentials(BaseModel):
    """Decrypted per-tenant credential pair.

    The secret key signs requests and is never transmitted.
    """

    api_key: str = Field(..., description="Value sent in x-auth-apikey")
    secret_key: str = Field(..., repr=False, description="Private key used for signing")
    api_url: str | None = Field(
        default=None,
        description="Tenant-specific base URL override",
    )


def serialize_body(body: Any) -> str | bytes:
    """Serialize a request body once, for both signing and sending.

    Args:
        body: None, a pre-serialized string or bytes, or a JSON-compatible value.

    Returns:
        The body, verbatim when already serialized; empty when there is no body.
    """
    if body is None:
        return ""
    if isinstance(body, (str, bytes)):
        return body
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def _encode_body(payload: str | bytes) -> bytes:
    return payload if isinstance(payload, bytes) else payload.encode("utf-8")


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _is_success_flag(value: Any) -> bool:
    return value is True or (isinstance(value, str) and value.lower() == "true")


class DrGreenClient:
    """Async client for the Dr. Green REST API.

    Construct once per process and pass it to whatever needs it. The
    underlying httpx client is created lazily unless one is injected.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Default API base URL. Reads DOCTOR_GREEN_API_URL
                through settings if not provided.
            http_client: Optional shared httpx client.
            timeout: Timeout for a lazily created client, in seconds.
        """
        self.base_url = (base_url or settings.DRGREEN_API_URL).rstrip("/")
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._logger = logger.bind(component="drgreen_client")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "DrGreenClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _resolve_base_url(
        self,
        credentials: DrGreenCredentials,
        base_url: str | None,
    ) -> str:
        return (base_url or credentials.api_url or self.base_url).rstrip("/")

    async def request(
        self,
        endpoint: str,
        credentials: DrGreenCredentials | None,
        *,
        method: HttpMethod = "GET",
        body: Any = None,
        headers: dict[str, str] | None = None,
        validate_success: bool = False,
        base_url: str | None = None,
    ) -> Any:
        """Make an authenticated request to the Dr. Green API.

        Args:
            endpoint: API path including any query string (e.g. "/strains?country=ZAF").
            credentials: Tenant credential pair.
            method: HTTP method.
            body: Request body; dicts are serialized to compact JSON.
            headers: Extra headers.
            validate_success: Require a truthy `success` marker in the response.
            base_url: Per-call base URL override.

        Returns:
            Parsed JSON response.

        Raises:
            MissingCredentialsError: If API key or secret key is absent.
            SigningError: If the secret key cannot sign the body.
            ExternalApiError: On a non-2xx response or transport failure.
            UpstreamLogicError: On an unparseable 2xx body or a failed
                success marker when validation is requested.
        """
        if credentials is None or not credentials.api_key or not credentials.secret_key:
            raise MissingCredentialsError()

        method = method.upper()  # type: ignore[assignment]
        payload = serialize_body(body)

        request_headers = {
            "Content-Type": "application/json",
            API_KEY_HEADER: credentials.api_key,
            **(headers or {}),
        }

        if method != "GET" and payload:
            request_headers[SIGNATURE_HEADER] = sign_payload(payload, credentials.secret_key)

        url = f"{self._resolve_base_url(credentials, base_url)}{endpoint}"

        self._logger.debug(
            "drgreen_request",
            method=method,
            endpoint=endpoint,
            signed=SIGNATURE_HEADER in request_headers,
        )

        client = await self._get_client()

        try:
            response = await client.request(
                method,
                url,
                content=_encode_body(payload) if payload else None,
                headers=request_headers,
            )
        except httpx.RequestError as e:
            self._logger.error("drgreen_request_error", endpoint=endpoint, error=str(e))
            raise ExternalApiError(0, "Network Error", str(e)) from e

        if not response.is_success:
            error_body = _parse_body(response)
            self._logger.warning(
                "drgreen_error_response",
                endpoint=endpoint,
                status=response.status_code,
            )
            raise ExternalApiError(response.status_code, response.reason_phrase, error_body)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamLogicError(
                "Malformed response from Dr. Green API", body=response.text
            ) from e

        if validate_success:
            success = data.get("success") if isinstance(data, dict) else None
            if not _is_success_flag(success):
                message = data.get("message") if isinstance(data, dict) else None
                raise UpstreamLogicError(message or "Dr. Green API error", body=data)

        self._logger.debug(
            "drgreen_response",
            endpoint=endpoint,
            status=response.status_code,
        )
        return data
