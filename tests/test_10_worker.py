"""
Test 10: Worker message protocol
Request/response envelopes, progress forwarding, id handling and timeouts.
"""

import asyncio

import pytest

from conftest import FakeProbe, make_engine, recognition_session, detection_session
from ocr_inference.exceptions import OCRTimeoutError
from ocr_inference.worker import (
    EngineWorker, EngineWorkerClient, MessageType, Request, Response, ResponseType, WorkerError,
)


def test_envelopes():
    request = Request.from_dict({"type": "PROCESS_IMAGE", "id": 7, "data": {"image": "a.png"}})
    assert request.type is MessageType.PROCESS_IMAGE
    assert request.to_dict() == {"type": "PROCESS_IMAGE", "id": 7, "data": {"image": "a.png"}}

    assert Response(ResponseType.SUCCESS, 7, {"ok": True}).to_dict() == \
        {"type": "SUCCESS", "id": 7, "data": {"ok": True}}
    assert Response(ResponseType.ERROR, 7, error={"message": "x"}).to_dict() == \
        {"type": "ERROR", "id": 7, "error": {"message": "x"}}
    assert not Response(ResponseType.PROGRESS, 7).terminal


def test_handle_reports_progress_before_terminal_response(config, image):
    worker = EngineWorker(lambda: make_engine(config))
    emitted = []

    async def scenario():
        init = await worker.handle({"type": "INIT", "id": 1, "data": {}}, emitted.append)
        result = await worker.handle({"type": "PROCESS_IMAGE", "id": 2, "data": {"image": image}},
                                     emitted.append)
        status = await worker.handle({"type": "GET_STATUS", "id": 3}, emitted.append)
        disposed = await worker.handle({"type": "DISPOSE", "id": 4}, emitted.append)
        return init, result, status, disposed

    init, result, status, disposed = asyncio.run(scenario())

    assert init == {"type": "SUCCESS", "id": 1,
                    "data": {"initialized": True, "backend": "vectorized", "using_fallback": False}}
    assert result["type"] == "SUCCESS"
    assert result["data"]["engine_used"] == "onnx"
    assert [r["text"] for r in result["data"]["regions"]] == ["AB", "AB"]

    progress = [m for m in emitted if m["id"] == 2]
    assert progress and all(m["type"] == "PROGRESS" for m in progress)
    assert [m["data"]["percent"] for m in progress] == [10, 50, 50, 90, 100]

    assert status["data"]["state"] == "ready_primary"
    assert disposed == {"type": "SUCCESS", "id": 4, "data": {"disposed": True}}


def test_reused_and_malformed_requests_are_rejected(config):
    worker = EngineWorker(lambda: make_engine(config))

    async def scenario():
        first = await worker.handle({"type": "GET_STATUS", "id": 1}, lambda m: None)
        reused = await worker.handle({"type": "GET_STATUS", "id": 1}, lambda m: None)
        unknown = await worker.handle({"type": "REBOOT", "id": 2}, lambda m: None)
        missing = await worker.handle({"type": "PROCESS_IMAGE", "id": 3, "data": {}}, lambda m: None)
        return first, reused, unknown, missing

    first, reused, unknown, missing = asyncio.run(scenario())
    assert first["type"] == "SUCCESS"
    assert reused["type"] == "ERROR" and reused["error"]["type"] == "ValidationError"
    assert unknown == {"type": "ERROR", "id": 2, "error": unknown["error"]}
    assert "REBOOT" in unknown["error"]["message"]
    assert missing["type"] == "ERROR"


def test_errors_carry_the_exception_type(config, image):
    worker = EngineWorker(lambda: make_engine(config))

    async def scenario():
        return await worker.handle({"type": "PROCESS_IMAGE", "id": 1, "data": {"image": image}},
                                   lambda m: None)

    response = asyncio.run(scenario())
    assert response["type"] == "ERROR"
    assert response["error"]["type"] == "InitializationError"
    assert response["error"]["details"]["reason"] == "not_initialized"


def test_client_round_trip(config, image):
    worker = EngineWorker(lambda: make_engine(config))
    events = []

    async def scenario():
        inbox, outbox = asyncio.Queue(), asyncio.Queue()
        server = asyncio.ensure_future(worker.serve(inbox, outbox))
        client = EngineWorkerClient.from_config(inbox, outbox, config)

        statuses = await asyncio.gather(client.initialize(), client.initialize())
        region = await client.process_region(image, {"x": 10, "y": 25, "width": 25, "height": 10},
                                             progress=events.append)
        status = await client.get_status()
        await client.dispose()
        with pytest.raises(WorkerError) as excinfo:
            await client.process_image(image)
        await client.close()
        await server
        return statuses, region, status, excinfo.value

    statuses, region, status, error = asyncio.run(scenario())
    assert statuses[0] == statuses[1]
    assert statuses[0]["initialized"] is True
    assert region["regions"][0]["source"] == "manual-selection"
    assert [e.percent for e in events] == [20, 60, 100]
    assert status["models_loaded"] is True
    assert error.error_type == "EngineDisposedError"


def test_client_timeout_stops_waiting(config, image):
    slow = FakeProbe(sessions={"text_det.onnx": detection_session,
                               "text_rec_jp.onnx": lambda: recognition_session(delay=0.3)})
    worker = EngineWorker(lambda: make_engine(config, slow))

    async def scenario():
        inbox, outbox = asyncio.Queue(), asyncio.Queue()
        server = asyncio.ensure_future(worker.serve(inbox, outbox))
        client = EngineWorkerClient(inbox, outbox, timeout=5.0)
        await client.initialize()
        with pytest.raises(OCRTimeoutError) as excinfo:
            await client.process_image(image, timeout=0.05)
        status = await client.get_status()
        await client.close()
        await server
        return excinfo.value, status

    error, status = asyncio.run(scenario())
    assert isinstance(error, TimeoutError)
    assert error.operation == "PROCESS_IMAGE"
    assert status["initialized"] is True


def test_failed_initialize_can_be_retried(config):
    attempts = []

    def factory():
        attempts.append(1)
        return make_engine(config, FakeProbe(supported=False))

    worker = EngineWorker(factory)

    async def scenario():
        inbox, outbox = asyncio.Queue(), asyncio.Queue()
        server = asyncio.ensure_future(worker.serve(inbox, outbox))
        client = EngineWorkerClient(inbox, outbox)
        with pytest.raises(WorkerError):
            await client.initialize({"fallback": {"enabled": False}})
        status = await client.initialize({"fallback": {"enabled": True}})
        await client.close()
        await server
        return status

    status = asyncio.run(scenario())
    assert status["using_fallback"] is True
    assert len(attempts) == 1
