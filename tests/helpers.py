"""Fake registry and layer builders for tests."""

import asyncio
import io
import json
import re
import tarfile
import threading
from contextlib import contextmanager
from typing import Optional

from aiohttp import web

from layer_peek.core.manifest import OCI_MANIFEST
from layer_peek.utils.digest import calculate_digest

REPOSITORY = "test/app"
TOKEN = "test-token"
RANGE_PATTERN = re.compile(r"^bytes=(\d+)-(\d+)$")


def make_layer(files: dict[str, Optional[bytes]], compress: bool = True) -> bytes:
    """Build a tar layer (gzip by default); a None content adds a directory."""
    buffer = io.BytesIO()
    mode = "w:gz" if compress else "w"
    with tarfile.open(fileobj=buffer, mode=mode) as tar:
        for name, content in files.items():
            if content is None:
                info = tarfile.TarInfo(name)
                info.type = tarfile.DIRTYPE
                tar.addfile(info)
                continue
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, fileobj=io.BytesIO(content))
    return buffer.getvalue()


def make_manifest(blobs: list[bytes]) -> dict:
    """Build an OCI image manifest listing the blobs bottom to top."""
    return {
        "schemaVersion": 2,
        "mediaType": OCI_MANIFEST,
        "config": {
            "mediaType": "application/vnd.oci.image.config.v1+json",
            "digest": calculate_digest(b"{}"),
            "size": 2,
        },
        "layers": [
            {
                "mediaType": "application/vnd.oci.image.layer.v1.tar+gzip",
                "digest": calculate_digest(blob),
                "size": len(blob),
            }
            for blob in blobs
        ],
    }


class FakeRegistry:
    """A minimal registry serving manifests and blobs with range support.

    Attributes:
        range_mode: "partial" (206), "ignore" (always 200 full body),
            "multipart" (206 multipart/byteranges), "truncate" (206 with
            half the requested bytes), "shifted" (Content-Range one byte
            off), "bad_range" (unparsable Content-Range) or "gzip"
            (Content-Encoding: gzip)
        require_auth: Answer the v2 ping with a bearer challenge and require
            the token on registry requests
        redirects: Blob digests served through a /cdn/ redirect
        chained_redirects: CDN digests that redirect once more
        probe_status: Status returned to ``bytes=0-1`` probes, if set
        slow_probe_body: Answer probes with 200 and a large body trickled
            out slowly
        response_delay: Seconds to wait before answering manifest and
            range requests
    """

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.manifests: dict[str, bytes] = {}
        self.range_mode = "partial"
        self.require_auth = False
        self.redirects: set[str] = set()
        self.probe_status: Optional[int] = None
        self.probe_delay = 0.0
        self.slow_probe_body = False
        self.response_delay = 0.0
        self.chained_redirects: set[str] = set()
        self.token_queries: list[dict[str, str]] = []
        self.requests: list[tuple[str, str, dict[str, str]]] = []

        self.app = web.Application()
        self.app.router.add_get("/v2/", self.ping)
        self.app.router.add_get("/token", self.token)
        self.app.router.add_get(r"/v2/{repo:.+}/manifests/{reference}", self.manifest)
        self.app.router.add_get(r"/v2/{repo:.+}/blobs/{digest}", self.blob)
        self.app.router.add_get("/cdn/{digest}", self.cdn)

    def add_image(self, blobs: list[bytes], tag: str = "latest") -> dict:
        for blob in blobs:
            self.blobs[calculate_digest(blob)] = blob
        manifest = make_manifest(blobs)
        self.manifests[tag] = json.dumps(manifest).encode()
        return manifest

    def blob_requests(self, digest: str) -> list[dict[str, str]]:
        return [
            headers
            for kind, target, headers in self.requests
            if kind in ("blob", "cdn") and target == digest
        ]

    def _authorized(self, request: web.Request) -> bool:
        if not self.require_auth:
            return True
        return request.headers.get("Authorization") == f"Bearer {TOKEN}"

    def _challenge(self, request: web.Request) -> web.Response:
        realm = f"http://{request.host}/token"
        return web.Response(
            status=401,
            headers={
                "WWW-Authenticate": f'Bearer realm="{realm}",service="fake-registry"'
            },
        )

    async def ping(self, request: web.Request) -> web.Response:
        self.requests.append(("ping", "/v2/", dict(request.headers)))
        if not self._authorized(request):
            return self._challenge(request)
        return web.json_response({})

    async def token(self, request: web.Request) -> web.Response:
        self.requests.append(("token", "/token", dict(request.headers)))
        self.token_queries.append(dict(request.query))
        return web.json_response({"token": TOKEN})

    async def manifest(self, request: web.Request) -> web.Response:
        self.requests.append(
            ("manifest", request.match_info["reference"], dict(request.headers))
        )
        if not self._authorized(request):
            return self._challenge(request)
        if self.response_delay:
            await asyncio.sleep(self.response_delay)
        body = self.manifests.get(request.match_info["reference"])
        if body is None:
            return web.json_response({"errors": []}, status=404)
        return web.Response(body=body, content_type=OCI_MANIFEST)

    async def blob(self, request: web.Request) -> web.StreamResponse:
        digest = request.match_info["digest"]
        self.requests.append(("blob", digest, dict(request.headers)))
        if not self._authorized(request):
            return self._challenge(request)
        if request.headers.get("Range") == "bytes=0-1":
            if self.probe_delay:
                await asyncio.sleep(self.probe_delay)
            if self.probe_status is not None:
                return web.Response(status=self.probe_status)
            if self.slow_probe_body:
                return await self._trickle(request)
        if digest in self.redirects:
            raise web.HTTPTemporaryRedirect(f"/cdn/{digest}")
        return await self._serve(request, digest)

    async def cdn(self, request: web.Request) -> web.StreamResponse:
        digest = request.match_info["digest"]
        self.requests.append(("cdn", digest, dict(request.headers)))
        if digest in self.chained_redirects:
            raise web.HTTPTemporaryRedirect(f"/cdn/{digest}/next")
        return await self._serve(request, digest)

    async def _serve(self, request: web.Request, digest: str) -> web.StreamResponse:
        data = self.blobs.get(digest)
        if self.response_delay:
            await asyncio.sleep(self.response_delay)
        if data is None:
            return web.json_response({"errors": []}, status=404)

        match = RANGE_PATTERN.match(request.headers.get("Range", ""))
        if self.range_mode == "ignore" or match is None:
            return web.Response(body=data, content_type="application/octet-stream")

        start = int(match.group(1))
        end = min(int(match.group(2)), len(data) - 1)
        if start >= len(data):
            return web.Response(status=416)
        body = data[start : end + 1]
        content_range = f"bytes {start}-{end}/{len(data)}"

        if self.range_mode == "multipart":
            return web.Response(
                status=206,
                body=body,
                headers={
                    "Content-Type": "multipart/byteranges; boundary=3d6b6a416f9b5",
                    "Content-Range": content_range,
                },
            )
        if self.range_mode == "truncate":
            response = web.StreamResponse(
                status=206,
                headers={
                    "Content-Type": "application/octet-stream",
                    "Content-Range": content_range,
                },
            )
            response.enable_chunked_encoding()
            await response.prepare(request)
            await response.write(body[: len(body) // 2])
            await response.write_eof()
            return response

        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Range": content_range,
        }
        if self.range_mode == "shifted":
            headers["Content-Range"] = f"bytes {start + 1}-{end + 1}/{len(data)}"
        elif self.range_mode == "bad_range":
            headers["Content-Range"] = "bytes=garbage"
        elif self.range_mode == "gzip":
            headers["Content-Encoding"] = "gzip"
        return web.Response(status=206, body=body, headers=headers)

    async def _trickle(self, request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(
            status=200, headers={"Content-Type": "application/octet-stream"}
        )
        response.content_length = 10 * 1024 * 1024
        await response.prepare(request)
        try:
            for _ in range(200):
                await response.write(b"\0" * 1024)
                await asyncio.sleep(0.05)
        except ConnectionError:
            pass
        return response


@contextmanager
def registry_in_thread(registry: FakeRegistry):
    """Serve a FakeRegistry from a background event loop.

    Yields the registry host ("127.0.0.1:<port>") for code that runs its
    own event loop, such as the CLI.
    """
    loop = asyncio.new_event_loop()
    runner = web.AppRunner(registry.app)
    started = threading.Event()

    def run() -> None:
        asyncio.set_event_loop(loop)
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", 0)
        loop.run_until_complete(site.start())
        started.set()
        loop.run_forever()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    started.wait(timeout=10)
    try:
        host, port = runner.addresses[0][:2]
        yield f"{host}:{port}"
    finally:
        asyncio.run_coroutine_threadsafe(runner.cleanup(), loop).result(timeout=10)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=10)
        loop.close()
