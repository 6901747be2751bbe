"""Minimal async registry client for pulling image metadata and layers."""

import json
import logging
import re
import zlib
from typing import Any, AsyncIterator, Iterable, Optional

import aiohttp

from ..utils.digest import calculate_digest
from ..utils.reference import DEFAULT_REGISTRY, ParsedReference, parse_reference
from .auth import AnonymousKeychain, Keychain
from .types import FetchOptions

logger = logging.getLogger(__name__)

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

MANIFEST_ACCEPT = ", ".join(
    [OCI_MANIFEST, DOCKER_MANIFEST_V2, OCI_INDEX, DOCKER_MANIFEST_LIST]
)
INDEX_MEDIA_TYPES = {OCI_INDEX, DOCKER_MANIFEST_LIST}

DOCKER_HUB_API_HOST = "registry-1.docker.io"
_LOCAL_HOSTS = ("localhost", "127.0.0.1", "[::1]")
_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')

CHUNK_SIZE = 64 * 1024


def registry_host(registry: str) -> str:
    """Strip the port from a registry address."""
    if registry.startswith("["):
        return registry[: registry.index("]") + 1]
    return registry.split(":", 1)[0]


def layer_compression(media_type: str) -> str:
    """Return "gzip", "zstd" or "none" for a layer media type."""
    if media_type.endswith(("gzip", "+gzip")):
        return "gzip"
    if media_type.endswith("zstd"):
        return "zstd"
    return "none"


async def gunzip_stream(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Decompress a gzip byte stream, including concatenated members."""
    decompressor = zlib.decompressobj(zlib.MAX_WBITS | 16)
    async for chunk in chunks:
        while chunk:
            data = decompressor.decompress(chunk)
            if data:
                yield data
            if decompressor.eof:
                chunk = decompressor.unused_data
                decompressor = zlib.decompressobj(zlib.MAX_WBITS | 16)
            else:
                chunk = b""
    tail = decompressor.flush()
    if tail:
        yield tail


class RemoteLayer:
    """Layer of a remote image, described by its manifest descriptor."""

    def __init__(
        self,
        client: "HttpRegistryClient",
        reference: ParsedReference,
        descriptor: dict[str, Any],
        diff_id: Optional[str],
        options: FetchOptions,
    ) -> None:
        self._client = client
        self._reference = reference
        self._descriptor = descriptor
        self._diff_id = diff_id
        self._options = options

    async def digest(self) -> str:
        return self._descriptor["digest"]

    async def diff_id(self) -> str:
        if not self._diff_id:
            raise ValueError(f"no diff id recorded for layer {self._descriptor.get('digest')}")
        return self._diff_id

    async def media_type(self) -> str:
        return self._descriptor.get("mediaType", "")

    async def size(self) -> int:
        return int(self._descriptor["size"])

    async def compressed(self) -> AsyncIterator[bytes]:
        """Stream the raw blob as stored in the registry."""
        async for chunk in self._client.stream_blob(
            self._reference, self._descriptor["digest"], self._options
        ):
            yield chunk

    async def uncompressed(self) -> AsyncIterator[bytes]:
        media_type = await self.media_type()
        compression = layer_compression(media_type)
        if compression == "zstd":
            raise ValueError(f"unsupported layer compression: {media_type}")

        if compression == "gzip":
            async for chunk in gunzip_stream(self.compressed()):
                yield chunk
        else:
            async for chunk in self.compressed():
                yield chunk


class RemoteImage:
    """Image fetched from a registry: manifest plus config."""

    def __init__(
        self,
        client: "HttpRegistryClient",
        reference: ParsedReference,
        manifest_bytes: bytes,
        media_type: str,
        config: dict[str, Any],
        options: FetchOptions,
    ) -> None:
        self._client = client
        self._reference = reference
        self._manifest_bytes = manifest_bytes
        self._manifest = json.loads(manifest_bytes)
        self._media_type = media_type
        self._config = config
        self._options = options

    @property
    def manifest(self) -> dict[str, Any]:
        return self._manifest

    @property
    def config(self) -> dict[str, Any]:
        return self._config

    async def digest(self) -> str:
        return calculate_digest(self._manifest_bytes)

    async def media_type(self) -> str:
        return self._media_type

    async def size(self) -> int:
        return len(self._manifest_bytes)

    async def layers(self) -> list[RemoteLayer]:
        descriptors = self._manifest.get("layers") or []
        diff_ids = (self._config.get("rootfs") or {}).get("diff_ids") or []
        return [
            RemoteLayer(
                self._client,
                self._reference,
                descriptor,
                diff_ids[index] if index < len(diff_ids) else None,
                self._options,
            )
            for index, descriptor in enumerate(descriptors)
        ]


class HttpRegistryClient:
    """Docker Registry API v2 async client for pulling images."""

    def __init__(
        self,
        timeout: float = 30,
        platform: str = "linux/amd64",
        insecure_registries: Iterable[str] = (),
    ) -> None:
        """Initialize the registry client.

        Args:
            timeout: Request timeout in seconds
            platform: "os/architecture[/variant]" picked from image indexes
            insecure_registries: Registry hosts reached over plain HTTP
        """
        self.timeout = timeout
        self.platform = platform
        self.insecure_registries = set(insecure_registries)
        self.session: Optional[aiohttp.ClientSession] = None
        self._tokens: dict[tuple[str, str], str] = {}

    async def __aenter__(self) -> "HttpRegistryClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    def parse_reference(self, reference: str, strict: bool = True) -> ParsedReference:
        return parse_reference(reference, strict=strict)

    def _ensure_session(self, options: FetchOptions) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                connector=options.transport,
                connector_owner=options.transport is None,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self.session

    def base_url(self, registry: str) -> str:
        """Return the API base URL for a registry host."""
        if registry == DEFAULT_REGISTRY:
            return f"https://{DOCKER_HUB_API_HOST}"
        if registry in self.insecure_registries or registry_host(registry) in _LOCAL_HOSTS:
            return f"http://{registry}"
        return f"https://{registry}"

    async def _fetch_token(
        self,
        challenge: str,
        reference: ParsedReference,
        keychain: Keychain,
    ) -> str:
        params = dict(_CHALLENGE_PARAM.findall(challenge))
        realm = params.pop("realm", None)
        if not realm:
            raise aiohttp.ClientError(f"malformed auth challenge: {challenge}")
        params.setdefault("scope", f"repository:{reference.repository}:pull")

        credentials = keychain.resolve(reference.registry)
        auth = (
            aiohttp.BasicAuth(credentials.username, credentials.password)
            if credentials
            else None
        )
        async with self.session.get(realm, params=params, auth=auth) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)
        token = data.get("token") or data.get("access_token")
        if not token:
            raise aiohttp.ClientError("token endpoint returned no token")
        return token

    def _auth_headers(
        self, reference: ParsedReference, keychain: Keychain
    ) -> dict[str, str]:
        token = self._tokens.get((reference.registry, reference.repository))
        if token:
            return {"Authorization": f"Bearer {token}"}
        credentials = keychain.resolve(reference.registry)
        if credentials:
            return {
                "Authorization": aiohttp.BasicAuth(
                    credentials.username, credentials.password
                ).encode()
            }
        return {}

    async def _request(
        self,
        reference: ParsedReference,
        path: str,
        options: FetchOptions,
        accept: Optional[str] = None,
    ) -> aiohttp.ClientResponse:
        """GET a registry path, negotiating a bearer token on 401.

        The caller owns the returned response and must release it.
        """
        session = self._ensure_session(options)
        keychain = options.keychain or AnonymousKeychain()
        url = f"{self.base_url(reference.registry)}/v2/{reference.repository}/{path}"

        for attempt in range(2):
            headers = self._auth_headers(reference, keychain)
            if accept:
                headers["Accept"] = accept
            resp = await session.get(url, headers=headers)
            challenge = resp.headers.get("WWW-Authenticate", "")
            if (
                resp.status == 401
                and attempt == 0
                and challenge.lower().startswith("bearer")
            ):
                resp.release()
                token = await self._fetch_token(challenge, reference, keychain)
                self._tokens[(reference.registry, reference.repository)] = token
                continue
            break

        if resp.status >= 400:
            resp.release()
            resp.raise_for_status()
        return resp

    async def get_manifest(
        self, reference: ParsedReference, identifier: str, options: FetchOptions
    ) -> tuple[bytes, str]:
        """Retrieve a manifest.

        Args:
            reference: Image reference
            identifier: Tag or digest
            options: Fetch options

        Returns:
            Tuple of (raw manifest bytes, media type)
        """
        resp = await self._request(
            reference, f"manifests/{identifier}", options, accept=MANIFEST_ACCEPT
        )
        try:
            body = await resp.read()
        finally:
            resp.release()

        media_type = resp.headers.get("Content-Type", "").split(";", 1)[0].strip()
        declared = json.loads(body).get("mediaType")
        return body, declared or media_type

    def _select_platform(self, index: dict[str, Any]) -> dict[str, Any]:
        wanted = self.platform.split("/")
        for descriptor in index.get("manifests") or []:
            platform = descriptor.get("platform") or {}
            candidate = [platform.get("os"), platform.get("architecture")]
            if len(wanted) > 2:
                candidate.append(platform.get("variant"))
            if candidate == wanted:
                return descriptor
        raise LookupError(f"manifest for platform {self.platform} not found in index")

    async def get_blob(
        self, reference: ParsedReference, digest: str, options: FetchOptions
    ) -> bytes:
        """Retrieve a whole blob into memory."""
        resp = await self._request(reference, f"blobs/{digest}", options)
        try:
            return await resp.read()
        finally:
            resp.release()

    async def stream_blob(
        self, reference: ParsedReference, digest: str, options: FetchOptions
    ) -> AsyncIterator[bytes]:
        """Stream a blob in chunks."""
        resp = await self._request(reference, f"blobs/{digest}", options)
        try:
            async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                yield chunk
        finally:
            resp.release()

    async def fetch_image(
        self, reference: ParsedReference, options: FetchOptions
    ) -> RemoteImage:
        """Fetch the manifest and config of an image.

        Image indexes are resolved to the configured platform.

        Args:
            reference: Parsed image reference
            options: Keychain and transport to use

        Returns:
            RemoteImage handle

        Raises:
            aiohttp.ClientError: On transport or HTTP errors
        """
        logger.debug(f"Fetching manifest for {reference}")
        body, media_type = await self.get_manifest(
            reference, reference.identifier, options
        )

        if media_type in INDEX_MEDIA_TYPES:
            descriptor = self._select_platform(json.loads(body))
            logger.debug(f"Resolved index to {self.platform} manifest {descriptor['digest']}")
            body, media_type = await self.get_manifest(
                reference, descriptor["digest"], options
            )

        manifest = json.loads(body)
        config_digest = (manifest.get("config") or {}).get("digest")
        if not config_digest:
            raise ValueError(f"manifest of {reference} has no config descriptor")
        config = json.loads(await self.get_blob(reference, config_digest, options))

        return RemoteImage(self, reference, body, media_type, config, options)
