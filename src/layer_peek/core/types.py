"""Configuration and value types shared across the package."""

import os
from dataclasses import dataclass, field
from typing import Optional

from .. import __version__

DEFAULT_PROBE_TIMEOUT = 30.0


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in ("1", "true", "yes", "on")


@dataclass
class RegistryConfig:
    """Settings for one layer access session.

    Attributes:
        probe_timeout: Total timeout in seconds for each redirect probe
        timeout: Total timeout in seconds for other requests (None: unbounded)
        insecure: Use plain HTTP for the registry
        username: Optional registry username for the token exchange
        password: Optional registry password or token
        user_agent: User-Agent header sent with every request
    """

    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    timeout: Optional[float] = None
    insecure: bool = False
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    user_agent: str = f"layer-peek/{__version__}"

    @classmethod
    def from_env(cls) -> "RegistryConfig":
        """Build a config from LAYER_PEEK_* environment variables."""
        probe_timeout = _env_float("LAYER_PEEK_PROBE_TIMEOUT")
        return cls(
            probe_timeout=(
                probe_timeout if probe_timeout is not None else DEFAULT_PROBE_TIMEOUT
            ),
            timeout=_env_float("LAYER_PEEK_TIMEOUT"),
            insecure=_env_flag("LAYER_PEEK_INSECURE"),
            username=os.getenv("LAYER_PEEK_USERNAME") or None,
            password=os.getenv("LAYER_PEEK_PASSWORD") or None,
        )


@dataclass(frozen=True)
class ImageReference:
    """A parsed registry + repository + tag/digest reference."""

    registry: str
    repository: str
    tag: Optional[str] = "latest"
    digest: Optional[str] = None
    scheme: str = "https"

    @property
    def reference(self) -> str:
        """Manifest reference: the digest when pinned, else the tag."""
        return self.digest or self.tag or "latest"

    @property
    def scope(self) -> str:
        return f"repository:{self.repository}:pull"

    @property
    def registry_url(self) -> str:
        return f"{self.scheme}://{self.registry}"

    @property
    def repository_url(self) -> str:
        return f"{self.registry_url}/v2/{self.repository}/"

    def blob_url(self, digest: str) -> str:
        """Canonical blob endpoint for a digest in this repository."""
        return f"{self.repository_url}blobs/{digest}"

    def __str__(self) -> str:
        name = f"{self.registry}/{self.repository}"
        if self.tag:
            name = f"{name}:{self.tag}"
        if self.digest:
            name = f"{name}@{self.digest}"
        return name


@dataclass(frozen=True)
class LayerDescriptor:
    """Layer identity from the manifest plus its canonical blob URL."""

    digest: str
    size: int
    url: str
    media_type: str = "application/vnd.oci.image.layer.v1.tar+gzip"
