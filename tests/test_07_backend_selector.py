"""
Test 7: Backend selection
Probe ordering, failure isolation, timeouts and the ONNX Runtime probes.
"""

import asyncio

import numpy as np
import onnxruntime as ort
import pytest

from conftest import FakeProbe
from ocr_inference.config import RuntimeConfig
from ocr_inference.core.backend_selector import (
    BACKEND_PROVIDERS, BackendSelector, OnnxProviderProbe, build_identity_model, create_probes,
)
from ocr_inference.core.sessions import ModelSession
from ocr_inference.exceptions import InitializationError, NoBackendAvailableError
from ocr_inference.types import Backend


def select(probes, **runtime):
    return asyncio.run(BackendSelector(probes, RuntimeConfig(**runtime)).select())


def test_first_passing_probe_wins():
    gpu = FakeProbe(Backend.GPU_COMPUTE)
    cpu = FakeProbe(Backend.VECTORIZED)
    assert select([gpu, cpu]) is gpu
    assert cpu.probe_calls == 0


def test_failures_are_skipped_and_only_winner_is_configured():
    unsupported = FakeProbe(Backend.GPU_COMPUTE, supported=False)
    broken = FakeProbe(Backend.GPU_SHADER, error=RuntimeError("driver crashed"))
    cpu = FakeProbe(Backend.VECTORIZED)

    assert select([unsupported, broken, cpu], num_threads=2) is cpu
    assert unsupported.probe_calls == 0
    assert broken.probe_calls == 1
    assert broken.configured is None
    assert cpu.configured.num_threads == 2


def test_hanging_probe_times_out():
    slow = FakeProbe(Backend.GPU_COMPUTE, delay=0.5)
    cpu = FakeProbe(Backend.VECTORIZED)
    assert select([slow, cpu], probe_timeout=0.05) is cpu


def test_no_backend_available():
    probes = [FakeProbe(Backend.GPU_COMPUTE, supported=False),
              FakeProbe(Backend.VECTORIZED, error=ValueError("bad"))]
    with pytest.raises(NoBackendAvailableError) as excinfo:
        select(probes)

    error = excinfo.value
    assert isinstance(error, InitializationError)
    assert error.attempted == ["gpu_compute", "vectorized"]
    assert error.failures["gpu_compute"] == "unsupported"
    assert "ValueError" in error.failures["vectorized"]


def test_create_probes_follows_configured_order():
    probes = create_probes(RuntimeConfig(backends=["vectorized", "gpu_compute"]))
    assert [p.backend for p in probes] == [Backend.VECTORIZED, Backend.GPU_COMPUTE]
    assert probes[0].providers == BACKEND_PROVIDERS[Backend.VECTORIZED]


def test_cpu_probe_runs_identity_model():
    probe = OnnxProviderProbe(Backend.VECTORIZED)
    assert probe.is_supported()
    probe.probe()


def test_probe_without_installed_provider_is_unsupported():
    probe = OnnxProviderProbe(Backend.GPU_SHADER, providers=["NoSuchExecutionProvider"])
    assert not probe.is_supported()
    with pytest.raises(RuntimeError):
        probe.probe()


def test_cpu_session_wraps_runtime(tmp_path):
    path = tmp_path / "identity.onnx"
    path.write_bytes(build_identity_model())

    probe = OnnxProviderProbe(Backend.VECTORIZED)
    probe.configure(RuntimeConfig(num_threads=1))
    assert probe.session_options().intra_op_num_threads == 1

    session = probe.create_session(path)
    assert isinstance(session, ModelSession)
    assert session.input_names == ["x"]
    assert session.output_names == ["y"]

    sample = np.array([1, 2, 3, 4], dtype=np.float32)
    np.testing.assert_array_equal(session.run({"x": sample})["y"], sample)

    session.release()
    assert session.released
    with pytest.raises(RuntimeError):
        session.run({"x": sample})


def test_cpu_provider_is_always_built_in():
    assert "CPUExecutionProvider" in ort.get_available_providers()
