import asyncio

import httpx
import pytest

from novel_video.infrastructure import AsyncJobClient, JobHandle, JobState, JobStatus
from novel_video.utils.backoff import JobTimeoutError, ProviderError, TransportError, describe_error


def make_client(handler, **kwargs) -> AsyncJobClient:
    kwargs.setdefault("retry_delay", 0)
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("max_wait", 1.0)
    return AsyncJobClient(
        provider="test",
        id_field="prompt_id",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


async def test_submit_falls_back_on_404():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        if request.url.path == "/api/prompt":
            return httpx.Response(404)
        return httpx.Response(200, json={"prompt_id": "job-1"})

    client = make_client(handler)
    handle = await client.submit(["http://comfy/api/prompt", "http://comfy/prompt"], {"prompt": {}})

    assert handle.job_id == "job-1"
    assert handle.endpoint == "http://comfy/prompt"
    assert seen == ["/api/prompt", "/prompt"]
    await client.aclose()


async def test_submit_all_endpoints_missing_is_provider_error():
    client = make_client(lambda request: httpx.Response(404), max_retries=2)
    with pytest.raises(ProviderError, match="endpoint not found"):
        await client.submit(["http://a/api/prompt", "http://a/prompt"], {})
    await client.aclose()


async def test_submit_retries_transport_errors():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] < 3:
            raise httpx.ConnectError("sin conexión")
        return httpx.Response(200, json={"prompt_id": "ok"})

    client = make_client(handler, max_retries=3)
    handle = await client.submit(["http://a/prompt"], {})
    assert handle.job_id == "ok"
    assert calls["n"] == 3
    await client.aclose()


async def test_submit_gives_up_after_max_retries():
    def handler(request):
        raise httpx.ConnectError("sin conexión")

    client = make_client(handler, max_retries=2)
    with pytest.raises(TransportError):
        await client.submit(["http://a/prompt"], {})
    await client.aclose()


async def test_submit_rejected_is_not_retried():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(400, text="bad workflow")

    client = make_client(handler)
    with pytest.raises(ProviderError) as exc:
        await client.submit(["http://a/prompt"], {})
    assert exc.value.status_code == 400
    assert calls["n"] == 1
    await client.aclose()


async def test_submit_without_job_id():
    client = make_client(lambda request: httpx.Response(200, json={"other": 1}))
    with pytest.raises(ProviderError):
        await client.submit(["http://a/prompt"], {})
    await client.aclose()


async def test_wait_times_out_after_max_wait():
    client = make_client(lambda request: httpx.Response(200), max_wait=0.2, poll_interval=0.02)
    polls = {"n": 0}

    async def never_done(handle):
        polls["n"] += 1
        return JobStatus.running()

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(JobTimeoutError) as exc:
        await client.wait(JobHandle("job-1", "test", "http://a/prompt"), never_done)
    elapsed = loop.time() - started

    assert elapsed >= 0.2
    assert elapsed < 2.0
    assert polls["n"] > 1
    assert describe_error(exc.value).startswith("timeout:")
    await client.aclose()


async def test_wait_returns_output():
    client = make_client(lambda request: httpx.Response(200))
    states = iter([JobStatus.running(), JobStatus(JobState.SUCCEEDED, output="http://cdn/video.mp4")])

    async def check(handle):
        return next(states)

    assert await client.wait(JobHandle("j", "test", ""), check) == "http://cdn/video.mp4"
    await client.aclose()


async def test_wait_reports_provider_failure():
    client = make_client(lambda request: httpx.Response(200))

    async def failed(handle):
        return JobStatus(JobState.FAILED, error="content policy")

    with pytest.raises(ProviderError, match="content policy"):
        await client.wait(JobHandle("j", "test", ""), failed)
    await client.aclose()


async def test_wait_tolerates_transport_errors_while_polling():
    client = make_client(lambda request: httpx.Response(200))
    calls = {"n": 0}

    async def flaky(handle):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadTimeout("lento")
        return JobStatus(JobState.SUCCEEDED, output=b"ok")

    assert await client.wait(JobHandle("j", "test", ""), flaky) == b"ok"
    await client.aclose()


async def test_download():
    def handler(request):
        assert request.url.params["filename"] == "out.png"
        return httpx.Response(200, content=b"PNG")

    client = make_client(handler)
    assert await client.download("http://a/api/view", params={"filename": "out.png"}) == b"PNG"
    await client.aclose()


async def test_download_empty_body_is_provider_error():
    client = make_client(lambda request: httpx.Response(200, content=b""))
    with pytest.raises(ProviderError, match="recurso vacío"):
        await client.download("http://a/api/view")
    await client.aclose()
