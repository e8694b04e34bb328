"""Unit tests for RemoteApiClient against a local aiohttp server."""

import asyncio
from pathlib import Path

import pytest
from aiohttp import test_utils, web

from whisperqueue.models import Segment, UploadDone, UploadProgress
from whisperqueue.transcription.api_client import RemoteApiClient, RemoteApiError, hash_file


class FakeService:
    """Transcription service recording uploaded chunks."""

    def __init__(self, result_status=200, result_body=None, upload_status=200, job_id="job-42"):
        self.result_status = result_status
        self.result_body = result_body
        self.upload_status = upload_status
        self.job_id = job_id
        self.chunks = []
        self.result_headers = []

    async def upload(self, request):
        body = await request.read()
        self.chunks.append((dict(request.headers), body))
        if self.upload_status != 200:
            return web.Response(status=self.upload_status, text="rejected")
        last = int(request.headers["X-Chunk-Index"]) == int(request.headers["X-Total-Chunks"]) - 1
        return web.json_response({"id": self.job_id} if last else {})

    async def result(self, request):
        self.result_headers.append(dict(request.headers))
        if isinstance(self.result_body, (dict, list)):
            return web.json_response(self.result_body, status=self.result_status)
        return web.Response(status=self.result_status, text=self.result_body or "")

    def app(self):
        app = web.Application()
        app.router.add_post("/upload", self.upload)
        app.router.add_get("/result/{job_id}", self.result)
        return app


def run_against(service, scenario, **client_kwargs):
    async def main():
        async with test_utils.TestServer(service.app()) as server:
            client = RemoteApiClient(f"http://{server.host}:{server.port}/", **client_kwargs)
            return await scenario(client)
    return asyncio.run(main())


async def collect_upload(client, path):
    return [state async for state in client.upload_file(path)]


@pytest.fixture
def audio_file(temp_data_dir):
    path = Path(temp_data_dir) / "talk.wav"
    path.write_bytes(bytes(range(10)))
    return path


@pytest.mark.unit
class TestUpload:
    """Test cases for chunked uploads."""

    def test_chunks_and_headers(self, audio_file):
        service = FakeService()

        states = run_against(service, lambda c: collect_upload(c, audio_file),
                             api_key="secret", user_id="user-1", chunk_size=4)

        assert states == [UploadProgress(0.4), UploadProgress(0.8), UploadProgress(1.0), UploadDone("job-42")]
        assert [body for _, body in service.chunks] == [bytes(range(4)), bytes(range(4, 8)), bytes(range(8, 10))]

        headers = [h for h, _ in service.chunks]
        assert [h["X-Chunk-Index"] for h in headers] == ["0", "1", "2"]
        assert {h["X-Total-Chunks"] for h in headers} == {"3"}
        assert {h["X-Original-Filename"] for h in headers} == {"talk.wav"}
        assert {h["X-Hash"] for h in headers} == {hash_file(audio_file)}
        assert len({h["X-Upload-ID"] for h in headers}) == 1
        assert headers[0]["X-API-Key"] == "secret"
        assert headers[0]["X-User-ID"] == "user-1"

    def test_rejected_chunk_raises(self, audio_file):
        service = FakeService(upload_status=413)

        with pytest.raises(RemoteApiError, match="413"):
            run_against(service, lambda c: collect_upload(c, audio_file), chunk_size=4)
        assert len(service.chunks) == 1

    def test_missing_job_id_raises(self, audio_file):
        service = FakeService(job_id=None)

        with pytest.raises(RemoteApiError, match="job id"):
            run_against(service, lambda c: collect_upload(c, audio_file))

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            RemoteApiClient("http://localhost", chunk_size=0)


@pytest.mark.unit
class TestGetResult:
    """Test cases for result polling."""

    def test_pending(self):
        result = run_against(FakeService(result_status=202), lambda c: c.get_result("job-1"))

        assert not result.is_done
        assert result.error_message is None

    def test_done_converts_seconds(self):
        service = FakeService(result_body={
            "language": "en",
            "segments": [{"start": 0.5, "end": 1.25, "text": " hi there "}],
        })

        result = run_against(service, lambda c: c.get_result("job-1"), api_key="secret")

        assert result.is_done
        assert result.language == "en"
        assert result.segments == [Segment(500, 1250, "hi there")]
        assert service.result_headers[0]["X-API-Key"] == "secret"

    def test_server_error_carries_message(self):
        service = FakeService(result_status=500, result_body={"error": "audio too short"})

        result = run_against(service, lambda c: c.get_result("job-1"))

        assert not result.is_done
        assert result.error_message == "audio too short"

    def test_unexpected_status_raises(self):
        with pytest.raises(RemoteApiError, match="404"):
            run_against(FakeService(result_status=404, result_body="no such job"),
                        lambda c: c.get_result("job-1"))

    @pytest.mark.parametrize("body", ["not json", {"segments": [{"start": 1.0}]}])
    def test_malformed_result_raises(self, body):
        with pytest.raises(RemoteApiError):
            run_against(FakeService(result_body=body), lambda c: c.get_result("job-1"))
