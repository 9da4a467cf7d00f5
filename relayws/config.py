"""
Configuration - Typed options for servers and connections.

Values are layered; each source overrides the ones before it:

    dataclass defaults
    < JSON / YAML files
    < .env file
    < RELAYWS_* environment variables
    < explicit overrides (e.g. CLI flags)

Nested keys use ``__`` in variable names: ``RELAYWS_SERVER__PORT=9000``
sets ``server.port``.
"""

from dataclasses import dataclass, fields, MISSING
from glob import glob
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Type, TypeVar, Union, get_args, get_origin, get_type_hints
import json
import os
import types

from dotenv import dotenv_values
import yaml


@dataclass
class ConnectionConfig:
    """Options shared by both endpoints of a connection."""

    # Send envelopes as text frames (binary frames when False)
    text_frames: bool = True

    # Include a formatted traceback in ``error`` replies
    include_error_stack: bool = True

    # Send {"type": "ok"} once the key is accepted
    acknowledge_auth: bool = True

    # Send {"type": "auth_failed"} before closing on a wrong key
    auth_failed_notice: bool = True


@dataclass
class ServerConfig(ConnectionConfig):
    """Accepting-side options."""

    key: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 8080

    # ASGI websocket route; every path when unset
    path: Optional[str] = None


class ConfigError(Exception):
    """Invalid, missing or unreadable configuration."""


C = TypeVar("C")


def deep_merge(target: Dict[str, Any], source: Mapping[str, Any]) -> None:
    """Merge ``source`` into ``target`` in place, recursing into dicts."""
    for key, value in source.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            deep_merge(current, value)
        else:
            target[key] = value


def parse_env_value(text: str) -> Any:
    """Interpret an environment string as bool, number, JSON or text."""
    lowered = text.strip().lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False

    for number in (int, float):
        try:
            return number(text)
        except ValueError:
            continue

    if text[:1] in ("{", "["):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    return text


class ConfigLoader:
    """
    Collects configuration from files, the environment and overrides.

    Example:
        ```python
        loader = ConfigLoader.load(paths=["relayws.yaml"], env_file=".env")
        server = Server(config=loader.server_config())
        ```
    """

    def __init__(self, env_prefix: str = "RELAYWS_"):
        self.env_prefix = env_prefix
        self.data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[Iterable[str]] = None,
        env_prefix: str = "RELAYWS_",
        env_file: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "ConfigLoader":
        """
        Build a loader from every source in precedence order.

        Args:
            paths: File paths or glob patterns (.json, .yaml, .yml)
            env_prefix: Only variables starting with this are read
            env_file: Optional .env file; ignored if it does not exist
            overrides: Applied last

        Raises:
            ConfigError: A named file is missing, unsupported or not a mapping
        """
        loader = cls(env_prefix=env_prefix)

        for pattern in paths or ():
            loader.add_files(pattern)
        if env_file:
            loader.add_env_file(env_file)
        loader.add_environ(os.environ)
        if overrides:
            deep_merge(loader.data, overrides)

        return loader

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_files(self, pattern: str) -> None:
        matches = sorted(glob(pattern))
        if not matches and not any(ch in pattern for ch in "*?["):
            raise ConfigError(f"Config file not found: {pattern}")

        for match in matches:
            deep_merge(self.data, self._read_file(Path(match)))

    def _read_file(self, path: Path) -> Mapping[str, Any]:
        with open(path) as f:
            if path.suffix == ".json":
                content = json.load(f)
            elif path.suffix in (".yaml", ".yml"):
                content = yaml.safe_load(f)
            else:
                raise ConfigError(f"Unsupported config file type: {path}")

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return content

    def add_env_file(self, path: str) -> None:
        if Path(path).exists():
            self.add_environ(dotenv_values(path))

    def add_environ(self, environ: Mapping[str, Optional[str]]) -> None:
        for name, value in environ.items():
            if name.startswith(self.env_prefix) and value is not None:
                self._assign(name[len(self.env_prefix):], value)

    def _assign(self, name: str, value: str) -> None:
        # SERVER__PORT -> data["server"]["port"]
        *parents, leaf = name.lower().split("__")

        node = self.data
        for part in parents:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[leaf] = parse_env_value(value)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, path: str, default: Any = None) -> Any:
        """Look up a dotted path such as ``server.port``."""
        node: Any = self.data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.data)

    def server_config(self) -> ServerConfig:
        """``ServerConfig`` from the ``server`` section."""
        return self.build(ServerConfig, "server")

    def connection_config(self) -> ConnectionConfig:
        """``ConnectionConfig`` from the ``connection`` section."""
        return self.build(ConnectionConfig, "connection")

    def build(self, config_class: Type[C], section: str) -> C:
        """
        Instantiate a config dataclass from one section.

        Unknown keys in the section are ignored.

        Raises:
            ConfigError: A value has the wrong type
        """
        values = self.get(section, {})
        if not isinstance(values, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")

        hints = get_type_hints(config_class)
        kwargs = {}
        for f in fields(config_class):
            if f.name not in values:
                if f.default is MISSING and f.default_factory is MISSING:
                    raise ConfigError(f"Required config field '{section}.{f.name}' not provided")
                continue

            annotation = hints[f.name]
            value = _coerce(values[f.name], annotation)
            if not _matches(value, annotation):
                raise ConfigError(
                    f"Config field '{section}.{f.name}' expected {annotation}, "
                    f"got {type(value).__name__}"
                )
            kwargs[f.name] = value

        return config_class(**kwargs)


def _union_args(annotation: Any) -> Optional[tuple]:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        return get_args(annotation)
    return None


def _coerce(value: Any, annotation: Any) -> Any:
    # Numeric-looking env values (e.g. a key of "1234") stay text for str fields
    accepts_str = annotation is str or str in (_union_args(annotation) or ())
    if accepts_str and isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _matches(value: Any, annotation: Any) -> bool:
    args = _union_args(annotation)
    if args is not None:
        if value is None:
            return type(None) in args
        return any(_matches(value, arg) for arg in args if arg is not type(None))

    # bool is an int subclass
    if annotation is int and isinstance(value, bool):
        return False

    origin = get_origin(annotation)
    return isinstance(value, origin or annotation)
