"""
Docker Registry V2 HTTP client

Link header pagination, response classification against the Distribution
API rules, and the registry operations built on top of them.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx

from config_manager import RegistryConfig
from debug_logger import ContextLogger
from registry_errors import (
    AuthorizationFailed,
    DecodeError,
    HeaderDecodeError,
    MethodNotAllowed,
    NotFound,
    PaginationError,
    TransportError,
    UnexpectedResponse,
    UnsupportedVersion,
    UrlResolutionError,
)

__version__ = "1.1.0"

logger = ContextLogger(__name__)

API_VERSION_HEADER = "Docker-Distribution-API-Version"
SUPPORTED_API_VERSION = "registry/2.0"
CONTENT_DIGEST_HEADER = "docker-content-digest"

MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MANIFEST_MEDIA_TYPES = [
    MANIFEST_V2,
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
]

VERSION_CHECK_PATH = "/v2"
CATALOG_PATH = "/v2/_catalog"
TAGS_PATH = "/v2/{name}/tags/list"
MANIFEST_PATH = "/v2/{name}/manifests/{reference}"

# Kept in the in-memory API call log
MAX_API_CALLS = 100

Page = TypeVar("Page")


def parse_registry_url(value: str) -> httpx.URL:
    """Turn a <REGISTRY> argument into an absolute origin URL

    A bare host such as ``localhost:5000`` gets the https scheme.
    """
    candidate = value if "://" in value else f"https://{value}"
    try:
        url = httpx.URL(candidate)
    except httpx.InvalidURL as e:
        raise UrlResolutionError(value, str(e)) from e
    if url.scheme not in ("http", "https") or not url.host:
        raise UrlResolutionError(value, "expected an http(s) URL with a host")
    return url


def parse_link_header(link_header: Optional[str]) -> Optional[str]:
    """Extract the continuation URI from an RFC5988 Link header

    Only the first link-value is consulted and its ``rel`` is not checked:
    ``<uri>; rel="next"`` yields ``uri``. Any other shape means there is no
    next page.
    """
    if not link_header:
        return None

    url_part = link_header.split(';', 1)[0].strip()
    if len(url_part) >= 2 and url_part.startswith('<') and url_part.endswith('>'):
        return url_part[1:-1]
    return None


def header_value(headers, name: str) -> Optional[str]:
    """Strictly decode a header value, None when the header is absent

    Header names match case-insensitively. A value that is not visible
    ASCII raises HeaderDecodeError instead of being treated as absent.
    """
    if not isinstance(headers, httpx.Headers):
        headers = httpx.Headers(headers)

    target = name.lower().encode("ascii")
    for key, value in headers.raw:
        if key.lower() != target:
            continue
        try:
            text = value.decode("ascii")
        except UnicodeDecodeError as e:
            raise HeaderDecodeError(name) from e
        if not all(c == "\t" or " " <= c <= "~" for c in text):
            raise HeaderDecodeError(name)
        return text
    return None


def classify(status_code: int, headers) -> None:
    """Check a registry response against the Distribution API rules

    Returns None when the registry confirmed V2 support, raises the matching
    RegistryError otherwise. 200/202 and 401 must carry
    ``Docker-Distribution-API-Version: registry/2.0``; 404 and 405 are
    reported without looking at the header; anything else is undocumented.
    """
    if status_code in (200, 202, 401):
        version = header_value(headers, API_VERSION_HEADER)
        if version is None:
            raise UnexpectedResponse("missing version header")
        if version != SUPPORTED_API_VERSION:
            raise UnsupportedVersion(version)
        if status_code == 401:
            if not isinstance(headers, httpx.Headers):
                headers = httpx.Headers(headers)
            raise AuthorizationFailed(challenge=headers.get("WWW-Authenticate"))
        return

    if status_code == 404:
        raise NotFound()
    if status_code == 405:
        raise MethodNotAllowed()
    raise UnexpectedResponse(f"undocumented status code: {status_code}")


def manifest_etag(etag: Optional[str], digest: Optional[str]) -> Optional[str]:
    """Unwrap an etag quoted as '"value"', falling back to the digest"""
    if etag and etag.startswith("'\"") and etag.endswith("\"'") and len(etag) >= 4:
        return etag[2:-2]
    return digest


def _string_list(data: Any, key: str, allow_null: bool = False) -> List[str]:
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    if key not in data:
        raise ValueError(f"missing field {key!r}")
    items = data[key]
    if items is None and allow_null:
        return []
    if not isinstance(items, list) or not all(isinstance(item, str) for item in items):
        raise ValueError(f"field {key!r} must be a list of strings")
    return items


@dataclass
class CatalogPage:
    """One page of GET /v2/_catalog"""
    repositories: List[str]

    @classmethod
    def from_json(cls, data: Any) -> "CatalogPage":
        return cls(repositories=_string_list(data, "repositories"))


@dataclass
class TagsPage:
    """One page of GET /v2/<name>/tags/list"""
    name: str
    tags: List[str]

    @classmethod
    def from_json(cls, data: Any) -> "TagsPage":
        # Registries answer "tags": null for a repository without tags
        tags = _string_list(data, "tags", allow_null=True)
        name = data.get("name")
        if not isinstance(name, str):
            raise ValueError("field 'name' must be a string")
        return cls(name=name, tags=tags)


@dataclass
class ManifestInfo:
    """Manifest of a tagged image together with its identifying headers"""
    name: str
    reference: str
    digest: str
    etag: Optional[str]
    media_type: Optional[str]
    manifest: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "reference": self.reference,
            "digest": self.digest,
            "etag": self.etag,
            "media_type": self.media_type,
            "manifest": self.manifest,
        }


class RegistryClient:
    """HTTP client for Docker Registry API v2"""

    def __init__(self, config: RegistryConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.origin = parse_registry_url(config.registry_url)
        self.transport = transport
        self.session: Optional[httpx.AsyncClient] = None
        self.api_calls: List[Dict[str, Any]] = []

    def _filter_response_headers(self, headers: httpx.Headers) -> Dict[str, str]:
        """Filter response headers down to the ones safe to log

        Includes: content headers, Link (pagination), Docker headers, rate
        limiting and the WWW-Authenticate challenge.
        """
        safe_headers = {
            'content-type', 'content-length', 'date', 'etag',
            'link', 'location',
            'docker-content-digest', 'docker-distribution-api-version',
            'x-ratelimit-limit', 'x-ratelimit-remaining', 'x-ratelimit-reset',
            'www-authenticate',
        }
        return {k: v for k, v in headers.items() if k.lower() in safe_headers}

    async def __aenter__(self):
        """Async context manager entry"""
        self.session = httpx.AsyncClient(
            timeout=self.config.timeout,
            verify=self.config.verify_tls,
            follow_redirects=True,
            transport=self.transport,
            headers={"User-Agent": f"dredge/{__version__}"},
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        if self.session:
            await self.session.aclose()
            self.session = None

    def resolve(self, path: str) -> httpx.URL:
        """Join a path or continuation URI onto the registry origin"""
        try:
            return self.origin.join(path)
        except (httpx.InvalidURL, ValueError) as e:
            raise UrlResolutionError(path, str(e)) from e

    def add_api_call(self, call_data: Dict[str, Any]):
        """Add API call to the in-memory call log"""
        self.api_calls.append(call_data)
        if len(self.api_calls) > MAX_API_CALLS:
            self.api_calls = self.api_calls[-MAX_API_CALLS:]

    async def request(self, method: str, path: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        """Send one request and return the response whatever its status"""
        if self.session is None:
            raise RuntimeError("RegistryClient must be used as an async context manager")

        url = self.resolve(path)
        start_time = time.time()
        logger.debug("Sending request", method=method, url=url)

        try:
            response = await self.session.request(method, url, headers=headers)
        except httpx.RequestError as e:
            logger.debug("Request failed", method=method, url=url, error=e)
            raise TransportError(str(url), e) from e

        duration = int((time.time() - start_time) * 1000)  # ms
        filtered = self._filter_response_headers(response.headers)
        self.add_api_call({
            "url": str(url),
            "method": method,
            "status_code": response.status_code,
            "duration_ms": duration,
            "size_bytes": len(response.content),
            "headers": filtered,
            "timestamp": time.strftime("%H:%M:%S.") + f"{int((time.time() % 1) * 1000):03d}",
        })
        logger.debug("Received response",
                     method=method,
                     url=url,
                     status_code=response.status_code,
                     duration_ms=duration,
                     headers=filtered)
        return response

    async def fetch_all(self, path: str, decode: Callable[[Any], Page]) -> List[Page]:
        """Paginate from path using the configured page limit"""
        return await fetch_paginated(self, path, decode, max_pages=self.config.max_pages)

    async def check_api_version(self) -> None:
        """Check registry API version (GET /v2)"""
        response = await self.request("GET", VERSION_CHECK_PATH)
        classify(response.status_code, response.headers)

    async def get_catalog(self, page_size: Optional[int] = None) -> List[str]:
        """List every repository name (GET /v2/_catalog), following pagination"""
        page_size = page_size or self.config.page_size
        path = CATALOG_PATH
        if page_size:
            path += f"?n={page_size}"

        pages = await self.fetch_all(path, CatalogPage.from_json)
        return [repository for page in pages for repository in page.repositories]

    async def get_tags(self, repository: str) -> List[str]:
        """List every tag of a repository (GET /v2/{name}/tags/list)"""
        pages = await self.fetch_all(TAGS_PATH.format(name=repository), TagsPage.from_json)
        return [tag for page in pages for tag in page.tags]

    async def get_digest(self, path: str) -> str:
        """Resolve a manifest path to its content digest with a HEAD request"""
        response = await self.request("HEAD", path, headers={"Accept": MANIFEST_V2})
        classify(response.status_code, response.headers)

        digest = header_value(response.headers, CONTENT_DIGEST_HEADER)
        if digest is None:
            raise UnexpectedResponse("missing docker-content-digest header")
        return digest

    async def get_manifest(self, repository: str, reference: str = "latest") -> ManifestInfo:
        """Fetch a manifest (GET /v2/{name}/manifests/{reference}) and its digest"""
        path = MANIFEST_PATH.format(name=repository, reference=reference)
        digest = await self.get_digest(path)

        response = await self.request("GET", path, headers={"Accept": ", ".join(MANIFEST_MEDIA_TYPES)})
        classify(response.status_code, response.headers)

        try:
            manifest = response.json()
        except ValueError as e:
            raise DecodeError(str(response.request.url), str(e)) from e
        if not isinstance(manifest, dict):
            raise DecodeError(str(response.request.url), "manifest is not a JSON object")

        etag = manifest_etag(header_value(response.headers, "etag"), digest)
        media_type = manifest.get("mediaType") or response.headers.get("content-type")
        return ManifestInfo(
            name=repository,
            reference=reference,
            digest=digest,
            etag=etag,
            media_type=media_type,
            manifest=manifest,
        )


async def fetch_paginated(
    client: RegistryClient,
    initial_path: str,
    decode: Callable[[Any], Page],
    validate: bool = True,
    max_pages: Optional[int] = None,
) -> List[Page]:
    """Follow Link header pagination from initial_path and decode every page

    Requests are issued one at a time. Each response is classified (when
    ``validate`` is set) and decoded before the next page is requested; any
    failure discards the pages collected so far. A URL that comes back a
    second time, or more than ``max_pages`` pages, raises PaginationError.
    """
    pages: List[Page] = []
    seen = set()
    current_path = initial_path

    while True:
        url = client.resolve(current_path)
        if str(url) in seen:
            raise PaginationError(f"Pagination loop detected: {url} was already fetched")
        if max_pages is not None and len(pages) >= max_pages:
            raise PaginationError(f"Pagination exceeded {max_pages} pages at {url}")
        seen.add(str(url))

        response = await client.request("GET", current_path)
        if validate:
            classify(response.status_code, response.headers)

        try:
            page = decode(response.json())
        except ValueError as e:
            raise DecodeError(str(url), str(e)) from e
        pages.append(page)

        next_path = parse_link_header(header_value(response.headers, "Link"))
        if next_path is None:
            logger.debug("Pagination complete", total_pages=len(pages))
            return pages

        logger.debug("Following Link header", page_number=len(pages), next_path=next_path)
        current_path = next_path
