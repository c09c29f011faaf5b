"""Configuration settings for the Random Image Server."""
import os
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from random_image_server.errors import ConfigError

# Configuration file location
CONFIG_PATH = os.getenv("RANDOM_IMAGE_SERVER_CONFIG", "config.yaml")

# Listener
HOST = "0.0.0.0"

# Streaming
CHUNK_SIZE = 8192  # 8KB chunks

# Serving modes
MODE_DIRECT = "direct"
MODE_REDIRECT = "redir"

# Fallbacks for CORS headers when the configured lists are empty
DEFAULT_ALLOWED_METHODS = "GET, POST"
DEFAULT_ALLOWED_HEADERS = "Content-Type, Authorization"


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", validate_default=True)

    port: str = "8098"
    image_dir: str = "./images"
    allowed_extensions: Tuple[str, ...] = (".jpg", ".png", ".gif", ".webp")
    disable_file_type_check: bool = False
    favicon_path: str = "./assets/favicon.ico"
    cors_enabled: bool = False
    allowed_origins: Tuple[str, ...] = ()
    allowed_methods: Tuple[str, ...] = ()
    allowed_headers: Tuple[str, ...] = ()
    mode: str = MODE_DIRECT
    referer_check_enabled: bool = False
    allowed_referers: Tuple[str, ...] = ()
    param_source_mapping: Mapping[str, str] = {}
    redirect_url_prefix: str = "/"
    avoid_repeat: bool = False
    random_seed: Optional[int] = None

    @field_validator('port', mode='before')
    @classmethod
    def validate_port(cls, v):
        # YAML happily reads an unquoted 8098 as an int
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str) or not v.isdigit() or not 0 < int(v) < 65536:
            raise ValueError(f'Invalid port: {v!r}')
        return v

    @field_validator('mode')
    @classmethod
    def validate_mode(cls, v):
        if v not in (MODE_DIRECT, MODE_REDIRECT):
            raise ValueError(f"Mode must be '{MODE_DIRECT}' or '{MODE_REDIRECT}', got {v!r}")
        return v

    @field_validator('allowed_extensions')
    @classmethod
    def validate_extensions(cls, v):
        for ext in v:
            if not ext.startswith('.'):
                raise ValueError(f'Extension must start with a dot: {ext!r}')
        return v

    @field_validator(
        'allowed_extensions', 'allowed_origins', 'allowed_methods',
        'allowed_headers', 'allowed_referers', 'param_source_mapping',
        mode='before',
    )
    @classmethod
    def empty_as_default(cls, v, info):
        # A key written with no value (`allowed_referers:`) loads as None
        if v is None:
            return {} if info.field_name == 'param_source_mapping' else ()
        return v

    @field_validator('param_source_mapping')
    @classmethod
    def freeze_mapping(cls, v):
        # Read-only view; frozen=True alone still allows item assignment
        return MappingProxyType(dict(v))

    @property
    def port_number(self) -> int:
        return int(self.port)


def load_config(path: Optional[Union[str, Path]] = None) -> ServerConfig:
    """Load and validate the YAML configuration file.

    Args:
        path: Location of the file, defaults to CONFIG_PATH

    Raises:
        ConfigError: if the file is missing, unreadable or invalid
    """
    path = Path(path or CONFIG_PATH)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Unable to read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing config file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")

    try:
        return ServerConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e
