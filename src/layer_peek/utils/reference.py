"""Image reference parsing."""

import ipaddress
import re

from ..core.types import ImageReference
from ..exceptions import InvalidReferenceError
from .digest import validate_digest

DOCKER_HUB = "docker.io"
DOCKER_HUB_REGISTRY = "registry-1.docker.io"
DEFAULT_TAG = "latest"

REPOSITORY_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
REPOSITORY_PATTERN = re.compile(
    rf"^{REPOSITORY_COMPONENT}(?:/{REPOSITORY_COMPONENT})*$"
)
TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")


def _is_registry_component(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def _is_plain_http_host(registry: str) -> bool:
    """Registries that conventionally serve plain HTTP."""
    host = registry.rsplit(":", 1)[0] if registry.count(":") == 1 else registry
    host = host.strip("[]")
    if host == "localhost" or host.endswith(".local"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_private


def split_repository_tag(name: str) -> tuple[str, str]:
    """Split "repository[:tag]" into repository and tag.

    Only a colon after the last slash separates a tag, so a registry port
    such as ``localhost:5000/app`` is kept in the repository part.

    Args:
        name: Reference without a digest part

    Returns:
        tuple[str, str]: (repository, tag) with "latest" as the default tag
    """
    slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > slash:
        tag = name[colon + 1 :]
        return name[:colon], tag or DEFAULT_TAG
    return name, DEFAULT_TAG


def parse_reference(value: str, insecure: bool = False) -> ImageReference:
    """Parse an image reference such as ``ghcr.io/org/app:v1``.

    Args:
        value: Reference string, optionally with a tag or ``@digest``
        insecure: Force plain HTTP for the registry

    Returns:
        Parsed ImageReference

    Raises:
        InvalidReferenceError: If the reference is malformed
    """
    if not value or value != value.strip():
        raise InvalidReferenceError(f"Invalid image reference: {value!r}")

    digest = None
    name = value
    if "@" in value:
        name, digest = value.split("@", 1)
        if not validate_digest(digest):
            raise InvalidReferenceError(f"Invalid digest in reference: {value!r}")

    has_tag = name.rfind(":") > name.rfind("/")
    name, tag = split_repository_tag(name)
    if digest is not None and not has_tag:
        tag = None

    parts = name.split("/", 1)
    if len(parts) == 2 and _is_registry_component(parts[0]):
        registry, repository = parts
    else:
        registry, repository = DOCKER_HUB, name

    if registry == DOCKER_HUB:
        registry = DOCKER_HUB_REGISTRY
        if "/" not in repository:
            repository = f"library/{repository}"

    if not REPOSITORY_PATTERN.match(repository):
        raise InvalidReferenceError(f"Invalid repository name: {repository!r}")
    if tag is not None and not TAG_PATTERN.match(tag):
        raise InvalidReferenceError(f"Invalid tag: {tag!r}")

    scheme = "http" if insecure or _is_plain_http_host(registry) else "https"
    return ImageReference(
        registry=registry,
        repository=repository,
        tag=tag,
        digest=digest,
        scheme=scheme,
    )
