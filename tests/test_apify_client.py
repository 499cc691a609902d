"""Tests for the Apify actor-run client (HTTP mocked with pytest-httpx)."""

import httpx
import pytest

from videocache.exceptions import JobFailedError, SubmissionError
from videocache.integrations.apify import STATUS_UNAVAILABLE, ApifyClient

BASE = "https://api.apify.test/v2"


@pytest.fixture
async def apify():
    async with ApifyClient("token-123", base_url=BASE, timeout=5) as client:
        yield client


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_returns_run_id(self, apify, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/acts/apidojo~tiktok-scraper/runs",
            json={"data": {"id": "run-abc", "status": "READY"}},
            status_code=201,
        )
        run_id = await apify.submit("apidojo~tiktok-scraper", {"keywords": ["cat"]})
        assert run_id == "run-abc"

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer token-123"
        assert b'"keywords"' in request.content

    @pytest.mark.asyncio
    async def test_submit_rejected(self, apify, httpx_mock):
        httpx_mock.add_response(method="POST", status_code=402, json={"error": {"message": "no credits"}})
        with pytest.raises(SubmissionError) as exc_info:
            await apify.submit("actor", {})
        assert exc_info.value.details["status"] == 402

    @pytest.mark.asyncio
    async def test_submit_without_run_id(self, apify, httpx_mock):
        httpx_mock.add_response(method="POST", json={"data": {}})
        with pytest.raises(SubmissionError):
            await apify.submit("actor", {})

    @pytest.mark.asyncio
    async def test_submit_transport_error(self, apify, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("refused"))
        with pytest.raises(SubmissionError):
            await apify.submit("actor", {})


class TestGetStatus:
    @pytest.mark.asyncio
    async def test_status_and_message(self, apify, httpx_mock):
        httpx_mock.add_response(
            url=f"{BASE}/actor-runs/run-1",
            json={"data": {"status": "FAILED", "statusMessage": "Actor crashed"}},
        )
        status = await apify.get_status("run-1")
        assert status.status == "FAILED"
        assert status.message == "Actor crashed"

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self, apify, httpx_mock):
        httpx_mock.add_response(url=f"{BASE}/actor-runs/run-1", status_code=503)
        status = await apify.get_status("run-1")
        assert status.status == STATUS_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self, apify, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout("slow"))
        status = await apify.get_status("run-1")
        assert status.status == STATUS_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unknown_run(self, apify, httpx_mock):
        httpx_mock.add_response(url=f"{BASE}/actor-runs/missing", status_code=404)
        with pytest.raises(JobFailedError):
            await apify.get_status("missing")

    @pytest.mark.asyncio
    async def test_non_json_body(self, apify, httpx_mock):
        httpx_mock.add_response(url=f"{BASE}/actor-runs/run-1", text="<html>gateway</html>")
        with pytest.raises(JobFailedError):
            await apify.get_status("run-1")

    @pytest.mark.asyncio
    async def test_body_not_an_object(self, apify, httpx_mock):
        httpx_mock.add_response(url=f"{BASE}/actor-runs/run-1", json=["SUCCEEDED"])
        with pytest.raises(JobFailedError):
            await apify.get_status("run-1")


class TestGetResults:
    @pytest.mark.asyncio
    async def test_dataset_items(self, apify, httpx_mock):
        httpx_mock.add_response(
            url=f"{BASE}/actor-runs/run-1/dataset/items?format=json",
            json=[{"id": "a"}, {"id": "b"}],
        )
        assert await apify.get_results("run-1") == [{"id": "a"}, {"id": "b"}]

    @pytest.mark.asyncio
    async def test_dataset_not_a_list(self, apify, httpx_mock):
        httpx_mock.add_response(
            url=f"{BASE}/actor-runs/run-1/dataset/items?format=json",
            json={"error": "nope"},
        )
        with pytest.raises(JobFailedError):
            await apify.get_results("run-1")

    @pytest.mark.asyncio
    async def test_dataset_not_json(self, apify, httpx_mock):
        httpx_mock.add_response(
            url=f"{BASE}/actor-runs/run-1/dataset/items?format=json",
            text="<html>gateway</html>",
        )
        with pytest.raises(JobFailedError) as exc_info:
            await apify.get_results("run-1")
        assert exc_info.value.details["body"] == "<html>gateway</html>"
