"""
Mock Registry for Development and Testing

An in-process Docker Registry V2 API served through httpx.MockTransport,
with Link header pagination on the catalog and tag listings.
"""

import hashlib
import json
from typing import Dict, Any, List, Optional, Tuple
from urllib.parse import quote

import httpx

from registry_client import CATALOG_PATH, MANIFEST_V2, SUPPORTED_API_VERSION

MOCK_REGISTRY_URL = "https://mock-registry.local"


class MockRegistryData:
    """Mock data provider for container registry API responses"""

    def __init__(self, repositories: Optional[Dict[str, List[str]]] = None, page_size: int = 100):
        if repositories is None:
            repositories = {
                "alpine": ["3.17", "3.18", "latest"],
                "nginx": ["1.24", "1.25", "latest", "stable"],
                "redis": ["6.2", "7.0", "latest"],
                "postgres": ["14", "15", "latest"],
                "library/ubuntu": ["20.04", "22.04", "latest"],
                "op-cdr/go-consumer": ["latest"],
                "empty": [],
            }
        self.repositories = repositories
        # Default page size when the client sends no ?n=
        self.page_size = page_size
        self.requests: List[httpx.Request] = []

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Docker-Distribution-API-Version": SUPPORTED_API_VERSION}
        if extra:
            headers.update(extra)
        return headers

    def _error(self, status_code: int, code: str, message: str) -> httpx.Response:
        body = {"errors": [{"code": code, "message": message, "detail": None}]}
        return httpx.Response(status_code, json=body, headers=self._headers())

    def generate_manifest(self, repository: str, tag: str) -> Dict[str, Any]:
        """Generate a deterministic schema 2 manifest for a tag"""
        def fake_digest(*parts: str) -> str:
            return "sha256:" + hashlib.sha256("/".join(parts).encode()).hexdigest()

        return {
            "schemaVersion": 2,
            "mediaType": MANIFEST_V2,
            "config": {
                "mediaType": "application/vnd.docker.container.image.v1+json",
                "size": 1469,
                "digest": fake_digest(repository, tag, "config"),
            },
            "layers": [
                {
                    "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
                    "size": 3370706,
                    "digest": fake_digest(repository, tag, "layer", "0"),
                },
            ],
        }

    def manifest_bytes(self, repository: str, tag: str) -> bytes:
        return json.dumps(self.generate_manifest(repository, tag), indent=3).encode()

    def manifest_digest(self, repository: str, tag: str) -> str:
        return "sha256:" + hashlib.sha256(self.manifest_bytes(repository, tag)).hexdigest()

    def _page(self, request: httpx.Request, items: List[str], path: str) -> Tuple[List[str], Dict[str, str]]:
        """Slice a sorted listing by ?n= and ?last=, adding a Link header when more remain"""
        params = request.url.params
        try:
            n = int(params.get("n", self.page_size))
        except ValueError:
            n = self.page_size
        last = params.get("last")

        items = sorted(items)
        if last is not None:
            items = [item for item in items if item > last]
        page, remaining = items[:n], items[n:]

        headers = {}
        if remaining and page:
            headers["Link"] = f'<{path}?n={n}&last={quote(page[-1], safe="")}>; rel="next"'
        return page, headers

    def handle(self, request: httpx.Request) -> httpx.Response:
        """Route a request to the matching Distribution API endpoint"""
        self.requests.append(request)
        path = request.url.path.rstrip("/")

        if path == "/v2":
            return httpx.Response(200, json={}, headers=self._headers())

        if path == CATALOG_PATH:
            page, headers = self._page(request, list(self.repositories), CATALOG_PATH)
            return httpx.Response(200, json={"repositories": page}, headers=self._headers(headers))

        if path.endswith("/tags/list"):
            name = path[len("/v2/"):-len("/tags/list")]
            if name not in self.repositories:
                return self._error(404, "NAME_UNKNOWN", "repository name not known to registry")
            tags = self.repositories[name]
            if not tags:
                return httpx.Response(200, json={"name": name, "tags": None}, headers=self._headers())
            page, headers = self._page(request, tags, path)
            return httpx.Response(200, json={"name": name, "tags": page}, headers=self._headers(headers))

        if "/manifests/" in path:
            name, _, tag = path[len("/v2/"):].rpartition("/manifests/")
            if name not in self.repositories or tag not in self.repositories[name]:
                return self._error(404, "MANIFEST_UNKNOWN", "manifest unknown")
            if request.method not in ("GET", "HEAD"):
                return self._error(405, "UNSUPPORTED", "The operation is unsupported.")
            digest = self.manifest_digest(name, tag)
            headers = self._headers({
                "Content-Type": MANIFEST_V2,
                "Docker-Content-Digest": digest,
                "Etag": f'"{digest}"',
            })
            content = self.manifest_bytes(name, tag)
            if request.method == "HEAD":
                return httpx.Response(200, headers=headers)
            return httpx.Response(200, content=content, headers=headers)

        return self._error(404, "NOT_FOUND", "page not found")

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)
