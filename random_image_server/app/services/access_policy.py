from typing import Dict, Optional, Sequence

from random_image_server import config
from random_image_server.config import ServerConfig


def resolve_directory(server_config: ServerConfig, source: Optional[str]) -> str:
    """Map the `source` query value to an image directory, falling back to image_dir."""
    if source and source in server_config.param_source_mapping:
        return server_config.param_source_mapping[source]
    return server_config.image_dir


def is_referer_allowed(referer: Optional[str], allowed_referers: Sequence[str]) -> bool:
    """Exact string match against the allow-list.

    An empty allow-list admits nobody. A missing header is compared as "".
    """
    return (referer or "") in allowed_referers


def build_cors_headers(server_config: ServerConfig, origin: Optional[str]) -> Dict[str, str]:
    """Compute the Access-Control-* headers for a request."""
    if not server_config.cors_enabled:
        return {}

    origin = origin or ""
    allow_origin = "*"
    for allowed in server_config.allowed_origins:
        if allowed == "*" or allowed == origin:
            allow_origin = allowed
            break

    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": (
            ", ".join(server_config.allowed_methods) or config.DEFAULT_ALLOWED_METHODS
        ),
        "Access-Control-Allow-Headers": (
            ", ".join(server_config.allowed_headers) or config.DEFAULT_ALLOWED_HEADERS
        ),
    }
