"""Off-chain token metadata resolution.

Token URIs point either at IPFS content (``ipfs://<cid>/...``) or at an HTTP
endpoint serving the same JSON document. Resolution never raises: any fetch or
parse problem yields the default metadata for the token and is recorded in
``MetadataResolver.failures``.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests

from .entities import TokenAttribute, TokenMetadata, TokenProperties
from .util import _log

IPFS_PREFIX = "ipfs://"
HTTP_PREFIX = "http"


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes


class HttpClient:
    def __init__(self, timeout: float = 10, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def get(self, url: str) -> Optional[HttpResponse]:
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            _log(f"WARN: GET {url} failed: {exc}")
            return None
        return HttpResponse(status=resp.status_code, body=resp.content)


class IpfsClient:
    """Content-addressed retrieval through an HTTP gateway."""

    def __init__(self, gateway: str = "https://ipfs.io/ipfs/", http: Optional[HttpClient] = None):
        self.gateway = gateway.rstrip("/") + "/"
        self.http = http or HttpClient()

    def get(self, cid: str) -> Optional[bytes]:
        resp = self.http.get(self.gateway + cid)
        if resp is None or resp.status != 200:
            return None
        return resp.body


@dataclass
class ResolvedMetadata:
    metadata: TokenMetadata
    properties: TokenProperties
    attributes: List[TokenAttribute] = field(default_factory=list)

    @property
    def forge_id(self) -> str:
        return self.properties.forge_id


class MetadataUnavailable(Exception):
    pass


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def default_metadata(token_id: str) -> ResolvedMetadata:
    metadata = TokenMetadata(
        id=token_id,
        token=token_id,
        name=f"Token {token_id}",
        description=f"Description for token {token_id}",
        image="",
        reward_id="",
        properties=token_id,
    )
    properties = TokenProperties(id=token_id, metadata=token_id)
    return ResolvedMetadata(metadata=metadata, properties=properties)


class MetadataResolver:
    def __init__(self, ipfs: Optional[IpfsClient] = None, http: Optional[HttpClient] = None):
        self.http = http or HttpClient()
        self.ipfs = ipfs or IpfsClient(http=self.http)
        self.failures: List[Tuple[str, str]] = []

    def resolve(self, token_id: str, uri: Optional[str]) -> ResolvedMetadata:
        if not uri:
            _log(f"WARN: Empty tokenURI for token ID: {token_id}")
            return default_metadata(token_id)
        try:
            payload = self._fetch_json(uri)
        except MetadataUnavailable as exc:
            self.failures.append((token_id, str(exc)))
            _log(f"WARN: Metadata for token {token_id} unavailable ({exc}), using defaults")
            return default_metadata(token_id)
        if payload is None:
            _log(f"Non-HTTP/IPFS tokenURI for token ID: {token_id}")
            return default_metadata(token_id)
        resolved = self._parse(token_id, payload)
        _log(f"Resolved metadata for token {token_id} from {uri}")
        return resolved

    def _fetch_json(self, uri: str) -> Optional[Dict[str, Any]]:
        if uri.startswith(IPFS_PREFIX):
            cid = uri[len(IPFS_PREFIX):].split("/")[0]
            body = self.ipfs.get(cid)
            if body is None:
                raise MetadataUnavailable(f"ipfs content {cid} not retrievable")
        elif uri.startswith(HTTP_PREFIX):
            resp = self.http.get(uri)
            if resp is None:
                raise MetadataUnavailable("no response")
            if resp.status != 200:
                raise MetadataUnavailable(f"status {resp.status}")
            body = resp.body
        else:
            return None

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise MetadataUnavailable(f"invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise MetadataUnavailable(f"expected a JSON object, got {type(payload).__name__}")
        return payload

    def _parse(self, token_id: str, payload: Dict[str, Any]) -> ResolvedMetadata:
        resolved = default_metadata(token_id)
        metadata = resolved.metadata
        properties = resolved.properties

        for key, attr in (("name", "name"), ("description", "description"), ("image", "image"), ("rewardId", "reward_id")):
            value = payload.get(key)
            if value is not None:
                setattr(metadata, attr, _text(value))

        forge_id = payload.get("forge_id")
        if forge_id is not None:
            # the forge identifier doubles as the reward id downstream
            properties.forge_id = _text(forge_id)
            metadata.reward_id = properties.forge_id
        properties.reward_id = metadata.reward_id

        attributes = payload.get("attributes")
        if isinstance(attributes, list):
            for index, item in enumerate(attributes):
                if not isinstance(item, dict):
                    continue
                trait_type = item.get("trait_type")
                value = item.get("value")
                if trait_type is None or value is None:
                    continue
                attribute = TokenAttribute(
                    id=f"{token_id}-attr-{index}",
                    metadata=token_id,
                    trait_type=_text(trait_type),
                    value=_text(value),
                )
                resolved.attributes.append(attribute)
                metadata.attributes.append(attribute.id)
        return resolved
