"""Percy adapter: serializes the page in the browser and posts snapshots to the Percy CLI.

``npx percy exec -- pytest ...`` runs a local Percy server for the length of the
suite. Each snapshot injects ``@percy/dom`` through the capturing handle, awaited
for Playwright pages and on a worker thread for WebDriver sessions, then posts
the serialized DOM to ``/percy/snapshot``. The server's ``success`` flag decides
the verdict, so a snapshot Percy never received is never reported as uploaded.
"""

from __future__ import annotations

import asyncio
import logging
import platform
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Callable

import httpx

from vrt.errors import MissingCredentialsError, RemoteAdapterError, RemoteSDKMissingError
from vrt.models.artifact import ArtifactRecord, CaptureTarget, Family
from vrt.models.comparison import BatchState, UploadRecord, UploadResult
from vrt.models.config import PercySettings

from .remote import derive_scope, utc_timestamp

logger = logging.getLogger(__name__)

SERVICE = "percy"
CLI_PACKAGE = "@percy/cli"
CLIENT_INFO = "vrt-harness"
SUPPORTED_CORE_MAJOR = "1"
FRAMEWORKS = {
    Family.SESSION: "selenium",
    Family.PAGE: "playwright",
}

_SERIALIZE_SCRIPT = "return PercyDOM.serialize(arguments[0]);"
_SERIALIZE_FUNCTION = "options => PercyDOM.serialize(options)"

ClientFactory = Callable[[str], httpx.AsyncClient]


def default_client(address: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=address, timeout=30.0)


def environment_info(family: Family) -> list[str]:
    framework = FRAMEWORKS[family]
    try:
        framework_version = version(framework)
    except PackageNotFoundError:
        framework_version = "unknown"
    return [f"{framework}/{framework_version}", f"python/{platform.python_version()}"]


class PercyCLI:
    """The local Percy server, after it has passed its healthcheck.

    Holds no open connection: every request gets its own client, so one
    instance can be reused across event loops within a run.
    """

    def __init__(self, address: str, dom_script: str, client_factory: ClientFactory = default_client):
        self.address = address
        self.dom_script = dom_script
        self._client_factory = client_factory

    @classmethod
    async def connect(cls, address: str, client_factory: ClientFactory = default_client) -> "PercyCLI":
        """Check the server is a supported Percy CLI and fetch the DOM serializer."""
        try:
            async with client_factory(address) as client:
                response = await client.get("/percy/healthcheck")
                response.raise_for_status()
                health = response.json()
                core_version = response.headers.get("x-percy-core-version", "")
                if not health.get("success"):
                    raise RemoteAdapterError(f"Percy healthcheck failed: {health.get('error')}")
                if core_version.split(".")[0] != SUPPORTED_CORE_MAJOR:
                    raise RemoteAdapterError(f"Unsupported Percy CLI version: {core_version or 'unknown'}")

                dom = await client.get("/percy/dom.js")
                dom.raise_for_status()
        except httpx.HTTPError as e:
            raise RemoteSDKMissingError(
                "Percy", CLI_PACKAGE,
                reason=f"Percy is not running at {address} ({e}); run the suite under `npx percy exec --`",
            ) from e
        return cls(address, dom.text, client_factory)

    async def post_snapshot(self, payload: dict[str, Any]) -> dict[str, Any]:
        async with self._client_factory(self.address) as client:
            response = await client.post("/percy/snapshot", json=payload)
        # Rejections come back as JSON with success=false, often with a 4xx/5xx status.
        data = response.json()
        if not data.get("success"):
            raise RemoteAdapterError(
                data.get("error") or f"Percy rejected the snapshot (HTTP {response.status_code})"
            )
        return data


async def serialize_dom(target: CaptureTarget, dom_script: str, options: dict[str, Any]) -> tuple[Any, str]:
    """Inject @percy/dom and serialize the document. Returns (dom_snapshot, url)."""
    serialize_options = {"enable_javascript": options.get("enable_javascript", True)}
    handle = target.handle
    if target.family is Family.SESSION:
        await asyncio.to_thread(handle.execute_script, dom_script)
        snapshot = await asyncio.to_thread(handle.execute_script, _SERIALIZE_SCRIPT, serialize_options)
        url = await asyncio.to_thread(getattr, handle, "current_url")
    else:
        await handle.evaluate(dom_script)
        snapshot = await handle.evaluate(_SERIALIZE_FUNCTION, serialize_options)
        url = handle.url
    if not snapshot:
        raise RemoteAdapterError("Percy DOM serialization returned an empty snapshot")
    return snapshot, url


class PercyAdapter:
    """Uploads one snapshot per capture and records every attempt in the batch."""

    def __init__(
        self,
        settings: PercySettings,
        batch: BatchState,
        client_factory: ClientFactory = default_client,
    ):
        self.settings = settings
        self.batch = batch
        self._client_factory = client_factory

    async def load_sdk(self) -> PercyCLI:
        """Connect to the Percy CLI once per run and cache it on the batch state."""
        if self.batch.initialized and self.batch.sdk is not None:
            return self.batch.sdk

        if not self.settings.token:
            raise MissingCredentialsError("Percy", ["PERCY_TOKEN"])

        try:
            cli = await PercyCLI.connect(self.settings.cli_api, self._client_factory)
        except RemoteAdapterError as e:
            logger.error("[Percy] Failed to initialize Percy: %s", e)
            raise

        self.batch.sdk = cli
        self.batch.initialized = True
        logger.info("[Percy] Connected to Percy CLI at %s", cli.address)
        return cli

    def snapshot_options(self, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        options: dict[str, Any] = {
            "widths": list(self.settings.widths),
            "min_height": self.settings.min_height,
            "enable_javascript": self.settings.enable_javascript,
        }
        options.update(overrides or {})
        return options

    async def upload(
        self,
        target: CaptureTarget,
        artifact: ArtifactRecord,
        options: dict[str, Any] | None = None,
    ) -> UploadResult:
        percy_options = self.snapshot_options(options)
        try:
            cli = await self.load_sdk()
            scope = await derive_scope(target)
            if scope:
                percy_options["scope"] = scope
            dom_snapshot, url = await serialize_dom(target, cli.dom_script, percy_options)
            await cli.post_snapshot({
                **percy_options,
                "name": artifact.test_name,
                "url": url,
                "dom_snapshot": dom_snapshot,
                "client_info": CLIENT_INFO,
                "environment_info": environment_info(target.family),
            })
        except Exception as e:
            logger.error("[Percy] Failed to upload screenshot %r: %s", artifact.test_name, e)
            self._record(target, artifact, False, str(e), percy_options)
            return UploadResult(success=False, test_name=artifact.test_name, message=str(e))

        message = f"Screenshot uploaded to Percy: {artifact.test_name}"
        self._record(target, artifact, True, message, percy_options)
        return UploadResult(success=True, test_name=artifact.test_name, message=message)

    def _record(
        self,
        target: CaptureTarget,
        artifact: ArtifactRecord,
        success: bool,
        message: str,
        options: dict[str, Any],
    ) -> None:
        self.batch.append(UploadRecord(
            test_name=artifact.test_name,
            service=SERVICE,
            family=target.family.value,
            success=success,
            message=message,
            timestamp=utc_timestamp(),
            raster_path=str(artifact.raster_path),
            options={k: v for k, v in options.items() if k != "scope" or isinstance(v, str)},
        ))
