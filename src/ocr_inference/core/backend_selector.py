"""Inference backend probing and selection.

Each Backend maps to a group of ONNX Runtime execution providers. A probe
first checks that one of its providers is compiled into the installed
runtime, then runs a one-node identity model end to end. The selector tries
probes in priority order and returns the first that passes. A failing,
unsupported or hanging probe is logged and skipped.

Examples
--------
    from ocr_inference.core.backend_selector import BackendSelector, create_probes

    selector = BackendSelector(create_probes(config.runtime), config.runtime)
    probe = await selector.select()
    probe.backend        # Backend.VECTORIZED on a CPU-only host
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import onnxruntime as ort
from onnx import TensorProto, helper

from ..config import RuntimeConfig
from ..exceptions import NoBackendAvailableError
from ..types import Backend
from ..utils.logging import log_diagnostic
from .sessions import ModelSession

logger = logging.getLogger(__name__)

BACKEND_PROVIDERS: Dict[Backend, tuple] = {
    Backend.GPU_COMPUTE: ("CUDAExecutionProvider", "ROCMExecutionProvider"),
    Backend.GPU_SHADER: ("DmlExecutionProvider", "WebGpuExecutionProvider",
                         "CoreMLExecutionProvider"),
    Backend.VECTORIZED: ("CPUExecutionProvider",),
}

_GRAPH_OPTIMIZATION = {
    "disable": ort.GraphOptimizationLevel.ORT_DISABLE_ALL,
    "basic": ort.GraphOptimizationLevel.ORT_ENABLE_BASIC,
    "extended": ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED,
    "all": ort.GraphOptimizationLevel.ORT_ENABLE_ALL,
}

_EXECUTION_MODE = {
    "sequential": ort.ExecutionMode.ORT_SEQUENTIAL,
    "parallel": ort.ExecutionMode.ORT_PARALLEL,
}


def build_identity_model() -> bytes:
    """Serialized ONNX model with a single Identity node over float32[4]."""
    graph = helper.make_graph(
        [helper.make_node("Identity", ["x"], ["y"])],
        "backend_probe",
        [helper.make_tensor_value_info("x", TensorProto.FLOAT, [4])],
        [helper.make_tensor_value_info("y", TensorProto.FLOAT, [4])],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    return model.SerializeToString()


def default_thread_count() -> int:
    return min(4, os.cpu_count() or 2)


class BackendProbe(ABC):
    """Capability probe and session factory for one backend."""

    backend: Backend

    @property
    def name(self) -> str:
        return self.backend.value

    @abstractmethod
    def is_supported(self) -> bool:
        """Cheap platform check, no inference."""

    @abstractmethod
    def probe(self) -> None:
        """Run a trivial inference; raise on any failure."""

    def configure(self, runtime: RuntimeConfig) -> None:
        """Apply runtime options. Called only on the selected backend."""

    @abstractmethod
    def create_session(self, model_path: Union[str, Path]):
        """Open a model session on this backend."""


class OnnxProviderProbe(BackendProbe):
    """Probe backed by ONNX Runtime execution providers."""

    def __init__(self, backend: Backend, providers: Optional[Sequence[str]] = None):
        self.backend = backend
        self.providers = tuple(providers or BACKEND_PROVIDERS[backend])
        self._runtime: Optional[RuntimeConfig] = None

    def available_providers(self) -> List[str]:
        installed = set(ort.get_available_providers())
        return [provider for provider in self.providers if provider in installed]

    def is_supported(self) -> bool:
        return bool(self.available_providers())

    def _execution_providers(self) -> List[str]:
        providers = self.available_providers()
        if not providers:
            raise RuntimeError(f"none of {list(self.providers)} is available")
        # The first matching provider only; no silent CPU fallback inside a GPU backend
        return providers[:1]

    def probe(self) -> None:
        session = ort.InferenceSession(build_identity_model(),
                                       providers=self._execution_providers())
        sample = np.arange(4, dtype=np.float32)
        (output,) = session.run(None, {"x": sample})
        if not np.array_equal(np.asarray(output), sample):
            raise RuntimeError("identity probe returned unexpected values")

    def configure(self, runtime: RuntimeConfig) -> None:
        self._runtime = runtime

    def session_options(self) -> ort.SessionOptions:
        runtime = self._runtime or RuntimeConfig()
        options = ort.SessionOptions()
        options.graph_optimization_level = _GRAPH_OPTIMIZATION[runtime.graph_optimization]
        options.execution_mode = _EXECUTION_MODE[runtime.execution_mode]
        options.enable_mem_pattern = runtime.enable_memory_pattern
        options.enable_cpu_mem_arena = runtime.enable_cpu_mem_arena
        if self.backend is Backend.VECTORIZED:
            threads = runtime.num_threads or default_thread_count()
            options.intra_op_num_threads = threads
            options.inter_op_num_threads = threads
        return options

    def create_session(self, model_path: Union[str, Path]):
        session = ort.InferenceSession(str(model_path),
                                       sess_options=self.session_options(),
                                       providers=self._execution_providers())
        return ModelSession(session)


def create_probes(runtime: Optional[RuntimeConfig] = None) -> List[BackendProbe]:
    """Probes for the configured backend order."""
    runtime = runtime or RuntimeConfig()
    return [OnnxProviderProbe(backend) for backend in runtime.backend_order]


class BackendSelector:
    """Returns the first backend whose probe passes."""

    def __init__(self, probes: Sequence[BackendProbe], runtime: Optional[RuntimeConfig] = None,
                 executor=None):
        self.probes = list(probes)
        self.runtime = runtime or RuntimeConfig()
        self.executor = executor

    async def _run_probe(self, probe: BackendProbe) -> None:
        loop = asyncio.get_running_loop()
        await asyncio.wait_for(loop.run_in_executor(self.executor, probe.probe),
                               timeout=self.runtime.probe_timeout)

    async def select(self) -> BackendProbe:
        failures: Dict[str, str] = {}

        for probe in self.probes:
            try:
                if not probe.is_supported():
                    failures[probe.name] = "unsupported"
                    log_diagnostic(logger, "backend_unsupported",
                                   f"Backend {probe.name} is not supported on this platform",
                                   level=logging.INFO, backend=probe.name)
                    continue
                await self._run_probe(probe)
            except asyncio.TimeoutError:
                failures[probe.name] = f"timeout after {self.runtime.probe_timeout}s"
                log_diagnostic(logger, "backend_probe_timeout",
                               f"Backend {probe.name} probe timed out",
                               backend=probe.name, timeout=self.runtime.probe_timeout)
                continue
            except Exception as e:
                failures[probe.name] = f"{type(e).__name__}: {e}"
                log_diagnostic(logger, "backend_probe_failed",
                               f"Backend {probe.name} probe failed: {e}",
                               backend=probe.name, error_type=type(e).__name__)
                continue

            probe.configure(self.runtime)
            logger.info(f"Selected inference backend: {probe.name}")
            return probe

        raise NoBackendAvailableError([probe.name for probe in self.probes], failures)


__all__ = [
    "BACKEND_PROVIDERS",
    "BackendProbe",
    "OnnxProviderProbe",
    "BackendSelector",
    "build_identity_model",
    "create_probes",
    "default_thread_count",
]
