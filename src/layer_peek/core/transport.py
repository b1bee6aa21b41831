"""Authenticated, scope-bound request executor for one repository."""

import asyncio
import logging
import re
from typing import Optional
from urllib.parse import urlsplit

import aiohttp

from ..exceptions import AuthResolutionError
from .types import ImageReference, RegistryConfig

logger = logging.getLogger(__name__)

CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def parse_www_authenticate(header: str) -> tuple[str, dict[str, str]]:
    """Parse a WWW-Authenticate challenge.

    Args:
        header: Header value, e.g. 'Bearer realm="https://auth",service="reg"'

    Returns:
        tuple[str, dict[str, str]]: Lower-cased scheme and its parameters
    """
    scheme, _, params = header.strip().partition(" ")
    return scheme.lower(), dict(CHALLENGE_PARAM.findall(params))


class Transport:
    """Request executor bound to one registry and pull scope.

    One ``aiohttp.ClientSession`` is created per transport and shared by
    every layer handle and lookup worker of the session. The registry
    credential is attached only to requests addressed to the registry host,
    so redirect targets such as CDN URLs are requested without it.
    """

    def __init__(
        self,
        reference: ImageReference,
        config: Optional[RegistryConfig] = None,
        connector: Optional[aiohttp.BaseConnector] = None,
    ) -> None:
        """Initialize the transport.

        Args:
            reference: Image reference whose repository scopes the credential
            config: Session settings
            connector: aiohttp connector (default: unlimited TCP connector)
        """
        self.reference = reference
        self.config = config or RegistryConfig()
        self.connector = connector
        self.session: Optional[aiohttp.ClientSession] = None
        self._authorization: Optional[str] = None

    async def __aenter__(self) -> "Transport":
        """Open the client session and authenticate."""
        self.open()
        try:
            await self.authenticate()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    def open(self) -> aiohttp.ClientSession:
        """Create the shared client session if needed."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                connector=self.connector or aiohttp.TCPConnector(limit=0),
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept-Encoding": "identity",
                },
                auto_decompress=False,
            )
        return self.session

    async def close(self) -> None:
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    @property
    def authenticated(self) -> bool:
        return self._authorization is not None

    def is_registry_url(self, url: str) -> bool:
        """Check if a URL addresses the registry this transport is bound to."""
        parts = urlsplit(url)
        return (
            parts.scheme == self.reference.scheme
            and parts.netloc == self.reference.registry
        )

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        **kwargs,
    ):
        """Issue a request through the shared session.

        Returns the aiohttp request context manager, so callers use
        ``async with transport.request(...) as resp``.
        """
        if self.session is None:
            raise RuntimeError("Transport is not open")
        request_headers = dict(headers or {})
        if self._authorization and self.is_registry_url(url):
            request_headers["Authorization"] = self._authorization
        kwargs.setdefault("allow_redirects", False)
        return self.session.request(method, url, headers=request_headers, **kwargs)

    def get(self, url: str, headers: Optional[dict[str, str]] = None, **kwargs):
        return self.request("GET", url, headers=headers, **kwargs)

    def _basic_auth(self) -> Optional[aiohttp.BasicAuth]:
        if self.config.username is None and self.config.password is None:
            return None
        return aiohttp.BasicAuth(self.config.username or "", self.config.password or "")

    async def authenticate(self) -> None:
        """Ping the registry and obtain a credential for the pull scope.

        Raises:
            AuthResolutionError: If the registry cannot be reached or the
                credential exchange fails
        """
        self.open()
        ping_url = f"{self.reference.registry_url}/v2/"
        try:
            async with self.session.get(ping_url, allow_redirects=False) as resp:
                status = resp.status
                challenge = resp.headers.get("WWW-Authenticate", "")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthResolutionError(
                f"Failed to reach registry {self.reference.registry}: "
                f"{str(e) or type(e).__name__}"
            ) from e

        if status == 200:
            logger.debug("Registry %s allows anonymous access", self.reference.registry)
            return
        if status != 401:
            raise AuthResolutionError(
                f"Unexpected status {status} pinging {ping_url}"
            )

        scheme, params = parse_www_authenticate(challenge)
        if scheme == "bearer":
            self._authorization = f"Bearer {await self._fetch_token(params)}"
        elif scheme == "basic":
            basic = self._basic_auth()
            if basic is None:
                raise AuthResolutionError(
                    f"{self.reference.registry} requires basic authentication, "
                    f"provide a username and/or password."
                )
            self._authorization = basic.encode()
        else:
            raise AuthResolutionError(
                f"Unsupported authentication challenge from "
                f"{self.reference.registry}: {challenge!r}"
            )

    async def _fetch_token(self, params: dict[str, str]) -> str:
        """Exchange the bearer challenge for a token.

        ref: https://distribution.github.io/distribution/spec/auth/token/
        """
        realm = params.get("realm")
        if not realm:
            raise AuthResolutionError(
                f"Bearer challenge from {self.reference.registry} has no realm"
            )
        query = {"scope": self.reference.scope}
        if "service" in params:
            query["service"] = params["service"]

        logger.debug("Requesting token from %s for %s", realm, self.reference.scope)
        try:
            async with self.session.get(
                realm, params=query, auth=self._basic_auth()
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise AuthResolutionError(
                        f"Token request to {realm} failed with status "
                        f"{resp.status}: {text[:200]}"
                    )
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthResolutionError(
                f"Token request to {realm} failed: {str(e) or type(e).__name__}"
            ) from e
        except ValueError as e:
            raise AuthResolutionError(f"Invalid token response from {realm}") from e

        token = data.get("token") or data.get("access_token")
        if not token:
            raise AuthResolutionError(f"Token response from {realm} has no token")
        return token
