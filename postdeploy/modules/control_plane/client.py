"""
Control-plane HTTP client.

Sends signed requests to the site's control-plane host. Every call
creates its own httpx.AsyncClient and disposes of it when done; nothing
is cached across calls because DNS state may change between invocations.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

import httpx

from postdeploy import __version__
from postdeploy.config.provider import PostDeploymentConfig
from postdeploy.errors import PreconditionMissingError
from postdeploy.modules.resolver import AddressResolver

from .token import TokenSigner

logger = logging.getLogger("postdeploy.control_plane")

USER_AGENT = f"postdeploy/{__version__}"
SITE_RESTRICTED_TOKEN_HEADER = "x-ms-site-restricted-token"
REQUEST_ID_HEADER = "x-ms-request-id"
CLIENT_REQUEST_ID_HEADER = "x-ms-client-request-id"
JSON_CONTENT_TYPE = "application/json; charset=utf-8"

# Matches the default request timeout of the platform's own HTTP stack
REQUEST_TIMEOUT = 100.0

ClientFactory = Callable[..., httpx.AsyncClient]


def display_url(url: str) -> str:
    """Strip the query string, which may carry secrets, for logging."""
    index = url.find("?")
    return url[:index] if index > 0 else url


def _format_address(address: str, port: Optional[int]) -> str:
    host = f"[{address}]" if ":" in address else address
    return f"{host}:{port}" if port else host


@dataclass(frozen=True)
class ResolvedTarget:
    """Where a control-plane request is actually sent."""
    scheme: str
    host_or_authority: str
    fallback_address: Optional[str] = None

    @property
    def requires_host_header(self) -> bool:
        return self.fallback_address is not None

    @property
    def hostname(self) -> str:
        return urlsplit(f"{self.scheme}://{self.host_or_authority}").hostname or self.host_or_authority

    @property
    def base_url(self) -> str:
        if self.fallback_address is None:
            return f"{self.scheme}://{self.host_or_authority}"
        port = urlsplit(f"{self.scheme}://{self.host_or_authority}").port
        return f"{self.scheme}://{_format_address(self.fallback_address, port)}"


@dataclass(frozen=True)
class OperationRequest:
    """A fully built request. Discarded once its response is consumed."""
    method: str
    url: str
    request_id: Optional[str] = None
    body: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    extensions: Dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> Optional[bytes]:
        if self.body is None and self.method == "GET":
            return None
        return (self.body or "").encode("utf-8")


class ControlPlaneClient:
    """
    Signed HTTP access to the control plane.

    Non-success responses raise httpx.HTTPStatusError; connection
    problems raise the matching httpx.TransportError. Both propagate
    unchanged so the caller decides whether to retry.
    """

    def __init__(
        self,
        config: PostDeploymentConfig,
        signer: Optional[TokenSigner] = None,
        resolver: Optional[AddressResolver] = None,
        client_factory: Optional[ClientFactory] = None,
        tracer: Optional[logging.Logger] = None,
    ):
        """
        Initialize control-plane client.

        Args:
            config: Post-deployment configuration
            signer: Token signer, defaults to one using the configured key
            resolver: Address resolver, defaults to one using the home stamp
            client_factory: Callable returning a fresh httpx.AsyncClient
            tracer: Default logger, overridable per call
        """
        self.config = config
        self.signer = signer or TokenSigner(config.auth_encryption_key)
        self.tracer = tracer or logger
        self.resolver = resolver or AddressResolver(config.home_stamp, tracer=self.tracer)
        self._client_factory = client_factory or httpx.AsyncClient

    def verify_environment(self) -> str:
        """Return the control-plane host or raise if it is unknown."""
        if not self.config.http_host:
            raise PreconditionMissingError("HTTP_HOST")
        return self.config.http_host

    @property
    def scheme(self) -> str:
        if self.config.is_local_host or self.config.skip_ssl_validation:
            return "http"
        return "https"

    async def resolve_target(self, tracer: Optional[logging.Logger] = None) -> ResolvedTarget:
        """Pick scheme, host and alternate address for the next request."""
        host_or_authority = self.verify_environment()
        if self.config.is_local_host and self.config.http_authority:
            host_or_authority = self.config.http_authority

        fallback = await self.resolver.resolve(host_or_authority, tracer=tracer)
        return ResolvedTarget(self.scheme, host_or_authority, fallback)

    def build_request(
        self,
        method: str,
        path: str,
        request_id: Optional[str],
        body: Optional[str],
        target: ResolvedTarget,
    ) -> OperationRequest:
        """Build a signed request against a resolved target."""
        headers = {
            "User-Agent": USER_AGENT,
            SITE_RESTRICTED_TOKEN_HEADER: self.signer.create_token(),
            "Content-Type": JSON_CONTENT_TYPE,
        }
        if request_id:
            headers[REQUEST_ID_HEADER] = request_id

        extensions: Dict[str, Any] = {}
        if target.requires_host_header:
            # Keep virtual-host routing and TLS validation on the real name
            headers["Host"] = target.host_or_authority
            if target.scheme == "https":
                extensions["sni_hostname"] = target.hostname

        return OperationRequest(
            method=method,
            url=f"{target.base_url}{path}",
            request_id=request_id,
            body=body,
            headers=headers,
            extensions=extensions,
        )

    async def _send(
        self,
        request: OperationRequest,
        tracer: logging.Logger,
        verb: str,
        begin: str,
        *args: Any,
    ) -> httpx.Response:
        """Send one request, tracing begin and end even when it fails."""
        tracer.debug(begin, *args)
        status_code = None
        try:
            async with self._client_factory(
                verify=not self.config.skip_ssl_validation,
                timeout=REQUEST_TIMEOUT,
            ) as client:
                response = await client.request(
                    request.method,
                    request.url,
                    content=request.content,
                    headers=request.headers,
                    extensions=request.extensions or None,
                )
                status_code = response.status_code
                response.raise_for_status()
                return response
        finally:
            tracer.debug("End Http%s, status: %s", verb, status_code)

    async def post(
        self,
        path: str,
        request_id: Optional[str],
        body: Optional[str] = None,
        tracer: Optional[logging.Logger] = None,
    ) -> httpx.Response:
        """
        POST to a control-plane path.

        Args:
            path: Path and query of the operation, e.g. /operations/settriggers
            request_id: Correlation id sent as x-ms-request-id
            body: UTF-8 JSON body, empty when None
            tracer: Logger for this call

        Raises:
            PreconditionMissingError: HTTP_HOST is not configured
            httpx.HTTPError: Transport failure or non-success status
        """
        tracer = tracer or self.tracer
        target = await self.resolve_target(tracer)
        request = self.build_request("POST", path, request_id, body, target)

        if target.requires_host_header:
            return await self._send(
                request, tracer, "Post",
                "Begin HttpPost %s, host: %s, x-ms-request-id: %s",
                request.url, target.host_or_authority, request_id,
            )
        return await self._send(
            request, tracer, "Post",
            "Begin HttpPost %s, x-ms-request-id: %s", request.url, request_id,
        )

    async def post_url(
        self,
        url: str,
        request_id: Optional[str] = None,
        tracer: Optional[logging.Logger] = None,
    ) -> httpx.Response:
        """Signed POST to an absolute URL, without address fallback."""
        tracer = tracer or self.tracer
        headers = {
            "User-Agent": USER_AGENT,
            SITE_RESTRICTED_TOKEN_HEADER: self.signer.create_token(),
        }
        if request_id:
            headers[REQUEST_ID_HEADER] = request_id
        request = OperationRequest("POST", url, request_id, None, headers)

        return await self._send(
            request, tracer, "Post",
            "Begin HttpPost %s, x-ms-request-id: %s", display_url(url), request_id,
        )

    async def put(
        self,
        url: str,
        request_id: Optional[str],
        body: str,
        tracer: Optional[logging.Logger] = None,
    ) -> httpx.Response:
        """PUT a JSON document to an absolute URL outside the control plane."""
        tracer = tracer or self.tracer
        headers = {
            "User-Agent": USER_AGENT,
            "Content-Type": JSON_CONTENT_TYPE,
        }
        if request_id:
            headers[CLIENT_REQUEST_ID_HEADER] = request_id
        request = OperationRequest("PUT", url, request_id, body, headers)

        return await self._send(
            request, tracer, "Put",
            "Begin HttpPut %s, x-ms-client-request-id: %s", display_url(url), request_id,
        )

    async def get(self, url: str, tracer: Optional[logging.Logger] = None) -> httpx.Response:
        """GET an absolute URL."""
        tracer = tracer or self.tracer
        request = OperationRequest("GET", url, headers={"User-Agent": USER_AGENT})

        return await self._send(request, tracer, "Get", "Begin HttpGet %s", display_url(url))
