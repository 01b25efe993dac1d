"""Tests for the Percy adapter."""

import sys
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from vrt.compare.percy import PercyAdapter, PercyCLI
from vrt.compare.remote import derive_scope
from vrt.errors import MissingCredentialsError, RemoteAdapterError, RemoteSDKMissingError
from vrt.models.artifact import ArtifactRecord, CaptureTarget, Family
from vrt.models.config import PercySettings

DOM_SNAPSHOT = {"html": "<html><body><div id='root'></div></body></html>"}


def fake_execute_script(script, *args):
    return DOM_SNAPSHOT if "PercyDOM.serialize" in script else None


@pytest.fixture
def artifact(tmp_path):
    return ArtifactRecord.create("Full page", tmp_path / "Full page.png")


@pytest.fixture
def adapter(percy_settings, batch, percy_server):
    return PercyAdapter(percy_settings, batch, client_factory=percy_server.client_factory)


@pytest.fixture
def serializing_driver(session_driver):
    session_driver.execute_script.side_effect = fake_execute_script
    return session_driver


@pytest.fixture
def async_page(page_handle):
    page_handle.evaluate = AsyncMock(side_effect=[None, DOM_SNAPSHOT])
    return page_handle


class TestLoadSdk:
    @pytest.mark.asyncio
    async def test_connects_once_and_caches(self, adapter, batch, percy_server):
        cli = await adapter.load_sdk()
        assert await adapter.load_sdk() is cli

        assert cli.dom_script == "window.PercyDOM = {};"
        assert percy_server.paths == ["/percy/healthcheck", "/percy/dom.js"]
        assert batch.initialized is True

    @pytest.mark.asyncio
    async def test_missing_token(self, batch, percy_server):
        adapter = PercyAdapter(PercySettings(enabled=True), batch, client_factory=percy_server.client_factory)
        with pytest.raises(MissingCredentialsError):
            await adapter.load_sdk()
        assert percy_server.paths == []

    @pytest.mark.asyncio
    async def test_server_not_running_names_cli_package(self, percy_settings, batch):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        adapter = PercyAdapter(
            percy_settings, batch,
            client_factory=lambda address: httpx.AsyncClient(base_url=address, transport=httpx.MockTransport(refuse)),
        )
        with pytest.raises(RemoteSDKMissingError, match="npm install --save-dev @percy/cli") as exc_info:
            await adapter.load_sdk()
        assert "percy exec" in str(exc_info.value)
        assert batch.initialized is False

    @pytest.mark.asyncio
    async def test_rejects_unsupported_cli_version(self, percy_settings, batch, make_percy_server):
        server = make_percy_server(core_version="0.9.1")
        adapter = PercyAdapter(percy_settings, batch, client_factory=server.client_factory)
        with pytest.raises(RemoteAdapterError, match="Unsupported Percy CLI version: 0.9.1"):
            await adapter.load_sdk()
        assert "/percy/dom.js" not in server.paths


class TestUpload:
    @pytest.mark.asyncio
    async def test_session_snapshot_posted(self, adapter, percy_server, serializing_driver, artifact):
        target = CaptureTarget(family=Family.SESSION, handle=serializing_driver)

        result = await adapter.upload(target, artifact)

        assert result.success
        assert result.message == "Screenshot uploaded to Percy: Full page"
        [payload] = percy_server.snapshots
        assert payload["name"] == "Full page"
        assert payload["url"] == "http://localhost:3000/"
        assert payload["dom_snapshot"] == DOM_SNAPSHOT
        assert payload["widths"] == [375, 1280]
        assert payload["min_height"] == 1024
        assert payload["environment_info"][0].startswith("selenium/")
        assert "scope" not in payload

        inject, serialize = serializing_driver.execute_script.call_args_list
        assert inject.args == ("window.PercyDOM = {};",)
        assert serialize.args[1] == {"enable_javascript": True}

    @pytest.mark.asyncio
    async def test_page_snapshot_awaits_evaluate(self, adapter, percy_server, async_page, artifact):
        target = CaptureTarget(family=Family.PAGE, handle=async_page)

        result = await adapter.upload(target, artifact)

        assert result.success
        assert async_page.evaluate.await_count == 2
        assert async_page.evaluate.await_args_list[1].args[1] == {"enable_javascript": True}
        [payload] = percy_server.snapshots
        assert payload["dom_snapshot"] == DOM_SNAPSHOT
        assert payload["environment_info"][0].startswith("playwright/")

    @pytest.mark.asyncio
    async def test_no_python_percy_package_needed(self, adapter, percy_server, async_page, artifact):
        with patch.dict(sys.modules, {"percy": None}):
            result = await adapter.upload(CaptureTarget(family=Family.PAGE, handle=async_page), artifact)

        assert result.success
        assert len(percy_server.snapshots) == 1

    @pytest.mark.asyncio
    async def test_rejected_snapshot_is_a_failure(
        self, percy_settings, batch, async_page, artifact, make_percy_server
    ):
        server = make_percy_server(snapshot_response={"success": False, "error": "Missing required URL"})
        adapter = PercyAdapter(percy_settings, batch, client_factory=server.client_factory)

        result = await adapter.upload(CaptureTarget(family=Family.PAGE, handle=async_page), artifact)

        assert not result.success
        assert result.message == "Missing required URL"
        assert batch.records[0].success is False

    @pytest.mark.asyncio
    async def test_empty_serialization_is_a_failure(self, adapter, percy_server, page_handle, artifact):
        page_handle.evaluate = AsyncMock(return_value=None)

        result = await adapter.upload(CaptureTarget(family=Family.PAGE, handle=page_handle), artifact)

        assert not result.success
        assert "empty snapshot" in result.message
        assert percy_server.snapshots == []

    @pytest.mark.asyncio
    async def test_records_every_attempt(self, adapter, batch, serializing_driver, artifact):
        await adapter.upload(CaptureTarget(family=Family.SESSION, handle=serializing_driver), artifact)

        assert len(batch.records) == 1
        record = batch.records[0]
        assert record.service == "percy"
        assert record.family == "session"
        assert record.success
        assert record.raster_path == str(artifact.raster_path)

    @pytest.mark.asyncio
    async def test_missing_token_becomes_failed_result(self, batch, percy_server, async_page, artifact):
        adapter = PercyAdapter(PercySettings(enabled=True), batch, client_factory=percy_server.client_factory)

        result = await adapter.upload(CaptureTarget(family=Family.PAGE, handle=async_page), artifact)

        assert not result.success
        assert "PERCY_TOKEN" in result.message

    @pytest.mark.asyncio
    async def test_string_scope_passed_through(self, adapter, percy_server, async_page, artifact):
        target = CaptureTarget(family=Family.PAGE, handle=async_page, scope=".App-header")

        await adapter.upload(target, artifact)

        assert percy_server.snapshots[0]["scope"] == ".App-header"
        assert adapter.batch.records[0].options["scope"] == ".App-header"

    @pytest.mark.asyncio
    async def test_options_override_defaults(self, adapter, percy_server, serializing_driver, artifact):
        target = CaptureTarget(family=Family.SESSION, handle=serializing_driver)
        await adapter.upload(target, artifact, {"widths": [768]})
        assert percy_server.snapshots[0]["widths"] == [768]


class TestPercyCLI:
    @pytest.mark.asyncio
    async def test_post_snapshot_raises_on_rejection(self, make_percy_server):
        server = make_percy_server(snapshot_response={"success": False})
        cli = PercyCLI("http://localhost:5338", "", server.client_factory)
        with pytest.raises(RemoteAdapterError, match="HTTP 500"):
            await cli.post_snapshot({"name": "Full page"})


class TestDeriveScope:
    @pytest.mark.asyncio
    async def test_no_scope(self, session_target):
        assert await derive_scope(session_target) is None

    @pytest.mark.asyncio
    async def test_session_element_scope(self, session_driver):
        element = object()
        session_driver.execute_script.return_value = ".App-logo"
        target = CaptureTarget(family=Family.SESSION, handle=session_driver, scope=element)

        assert await derive_scope(target) == ".App-logo"
        script, arg = session_driver.execute_script.call_args.args
        assert arg is element
        assert "getAttribute('class')" in script

    @pytest.mark.asyncio
    async def test_page_element_scope(self, page_handle):
        element = Mock(spec=["evaluate"])
        element.evaluate = AsyncMock(return_value="header")
        target = CaptureTarget(family=Family.PAGE, handle=page_handle, scope=element)

        assert await derive_scope(target) == "header"
        element.evaluate.assert_awaited_once()
