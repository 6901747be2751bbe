"""Registry credential sources."""

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

logger = logging.getLogger(__name__)

DOCKER_HUB_AUTH_KEY = "https://index.docker.io/v1/"
_DOCKER_HUB_HOSTS = {"index.docker.io", "docker.io", "registry-1.docker.io"}


@dataclass(frozen=True)
class Credentials:
    """Username/password pair for a registry."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


class Keychain(Protocol):
    """Resolves credentials for a registry host."""

    def resolve(self, registry: str) -> Optional[Credentials]: ...


class AnonymousKeychain:
    """Keychain that never returns credentials."""

    def resolve(self, registry: str) -> Optional[Credentials]:
        return None


def _auth_keys(registry: str) -> list[str]:
    """Candidate config.json keys for a registry host."""
    if registry in _DOCKER_HUB_HOSTS:
        return [DOCKER_HUB_AUTH_KEY, "index.docker.io", "docker.io"]
    return [registry, f"https://{registry}", f"http://{registry}"]


def decode_auth_entry(entry: dict) -> Optional[Credentials]:
    """Decode a single ``auths`` entry of a Docker config file.

    Args:
        entry: Entry with either a base64 "auth" field or explicit
            "username"/"password" fields

    Returns:
        Credentials, or None if the entry carries none
    """
    encoded = entry.get("auth")
    if encoded:
        try:
            decoded = base64.b64decode(encoded).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return None
        username, sep, password = decoded.partition(":")
        if not sep:
            return None
        return Credentials(username, password)

    username = entry.get("username")
    password = entry.get("password")
    if username and password:
        return Credentials(username, password)
    return None


class DockerConfigKeychain:
    """Keychain backed by a Docker ``config.json`` file.

    The file is looked up in ``$DOCKER_CONFIG`` and then in ``~/.docker``.
    Credential helpers are not consulted.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        """Initialize keychain.

        Args:
            path: Explicit config.json path
        """
        self._path = Path(path) if path else None

    @property
    def path(self) -> Path:
        if self._path is not None:
            return self._path
        config_dir = os.environ.get("DOCKER_CONFIG")
        if config_dir:
            return Path(config_dir) / "config.json"
        return Path.home() / ".docker" / "config.json"

    def _load_auths(self) -> dict:
        path = self.path
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable docker config {path}: {e}")
            return {}

        auths = data.get("auths") if isinstance(data, dict) else None
        return auths if isinstance(auths, dict) else {}

    def resolve(self, registry: str) -> Optional[Credentials]:
        auths = self._load_auths()
        for key in _auth_keys(registry):
            entry = auths.get(key)
            if isinstance(entry, dict):
                credentials = decode_auth_entry(entry)
                if credentials is not None:
                    return credentials
        return None
