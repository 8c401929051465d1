"""
Memory and throughput estimation for serving an LLM.

All sizes are binary gigabytes (bytes / 1024**3) even though they are labelled
"GB" everywhere, to stay numerically identical to the published calculator.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from catalog import DEFAULT_PARAMS, MODELS, REFERENCE_GPUS, ModelSpec, heuristic_architecture, round_half_up

logger = logging.getLogger(__name__)

GIB = 1024 ** 3
MAX_CONCURRENCY = 1000


class Quantization(str, Enum):
    FP32 = "fp32"
    FP16 = "fp16"
    BF16 = "bf16"
    FP8 = "fp8"
    INT8 = "int8"
    INT4 = "int4"


# Bytes per parameter for the weights
WEIGHT_BYTES_PER_PARAM = {
    Quantization.FP32: 4,
    Quantization.FP16: 2,
    Quantization.BF16: 2,
    Quantization.FP8: 1,
    Quantization.INT8: 1,
    Quantization.INT4: 0.5,
}

# Fraction of peak bandwidth actually achieved while decoding
COMPUTE_EFFICIENCY = {
    Quantization.INT8: 0.85,
    Quantization.FP8: 0.85,
    Quantization.INT4: 0.9,
}
DEFAULT_COMPUTE_EFFICIENCY = 0.7


def weight_bytes_per_param(quantization):
    return WEIGHT_BYTES_PER_PARAM[Quantization(quantization)]


def kv_bytes_per_value(quantization):
    """Bytes per KV-cache / activation value for a given precision."""
    quantization = Quantization(quantization)
    if quantization == Quantization.FP32:
        return 4
    if quantization in (Quantization.FP16, Quantization.BF16):
        return 2
    return 1


def compute_efficiency(quantization):
    return COMPUTE_EFFICIENCY.get(Quantization(quantization), DEFAULT_COMPUTE_EFFICIENCY)


@dataclass(frozen=True)
class OverheadConfig:
    system_overhead_percent: float = 30.0
    system_overhead_fixed_gb: float = 0.0
    kv_overhead_percent: float = 0.0


@dataclass(frozen=True)
class WorkloadConfig:
    """
    The request shape driving every estimate.

    Invalid values raise ValueError here, so everything downstream can assume
    a sane workload.
    """

    model: Optional[str] = "qwen-ds-7b"
    quantization: Quantization = Quantization.FP16
    context_length: int = 4096
    concurrency: int = 1
    batch_size: int = 1
    custom_params_billions: Optional[float] = None
    kv_overhead_percent: float = 0.0
    system_overhead_percent: float = 30.0
    system_overhead_fixed_gb: float = 0.0
    gpu_name: Optional[str] = None
    gpu_count: int = 1
    vram_override_gb: Optional[float] = None

    def __post_init__(self):
        try:
            quantization = self.quantization
            if not isinstance(quantization, Quantization):
                quantization = Quantization(str(quantization).strip().lower())
            object.__setattr__(self, "quantization", quantization)
        except ValueError:
            raise ValueError(f"Unknown quantization: {self.quantization!r}") from None

        if self.context_length < 1:
            raise ValueError(f"context_length must be >= 1, got {self.context_length}")
        if not 1 <= self.concurrency <= MAX_CONCURRENCY:
            raise ValueError(f"concurrency must be between 1 and {MAX_CONCURRENCY}, got {self.concurrency}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if not 0 <= self.kv_overhead_percent <= 100:
            raise ValueError(f"kv_overhead_percent must be between 0 and 100, got {self.kv_overhead_percent}")
        if self.system_overhead_percent < 0 or self.system_overhead_fixed_gb < 0:
            raise ValueError("System overhead cannot be negative")
        if self.custom_params_billions is not None and self.custom_params_billions <= 0:
            raise ValueError(f"custom_params_billions must be > 0, got {self.custom_params_billions}")
        if self.gpu_count < 1:
            raise ValueError(f"gpu_count must be >= 1, got {self.gpu_count}")
        if self.vram_override_gb is not None and self.vram_override_gb <= 0:
            raise ValueError(f"vram_override_gb must be > 0, got {self.vram_override_gb}")

    @property
    def custom_params(self):
        if self.custom_params_billions is None:
            return None
        return self.custom_params_billions * 1e9

    @property
    def overhead(self):
        return OverheadConfig(
            system_overhead_percent=self.system_overhead_percent,
            system_overhead_fixed_gb=self.system_overhead_fixed_gb,
            kv_overhead_percent=self.kv_overhead_percent,
        )

    def resolve_model(self, catalog=None):
        return resolve_model(self.model, self.custom_params, catalog)


@dataclass(frozen=True)
class MemoryBreakdown:
    weights_gb: float
    cache_gb: float
    activation_gb: float
    overhead_gb: float
    total_gb: float

    def as_dict(self):
        return {
            "weights": self.weights_gb,
            "cache": self.cache_gb,
            "activation": self.activation_gb,
            "overhead": self.overhead_gb,
            "total": self.total_gb,
        }


@dataclass(frozen=True)
class PerformanceEstimate:
    tokens_per_second: float
    bandwidth_utilization_percent: float
    effective_tokens_per_second_per_request: float

    def rounded(self):
        """Integer values for display."""
        return {
            "inference_speed": round_half_up(self.tokens_per_second),
            "bandwidth_utilization": round_half_up(self.bandwidth_utilization_percent),
            "effective_speed": round_half_up(self.effective_tokens_per_second_per_request),
        }


def resolve_model(name=None, custom_params=None, catalog=None):
    """
    Resolve the architecture to size.

    Parameters come from ``custom_params`` if given, else the catalog entry,
    else 7B. Layers and hidden size come from the catalog entry when the name
    is known, otherwise from the parameter-count heuristic.
    """
    catalog = MODELS if catalog is None else catalog
    known = catalog.get(name) if name else None
    params = custom_params or (known.params if known else DEFAULT_PARAMS)

    if known:
        return ModelSpec(known.name, params, known.layers, known.hidden_dim, known.heads)

    layers, hidden_dim, heads = heuristic_architecture(params)
    logger.debug("Model %r not in catalog, using heuristic architecture for %.1fB params",
                 name, params / 1e9)
    return ModelSpec(name or "custom", params, layers, hidden_dim, heads)


def activation_overhead_factor(model):
    # Large models carry extra activation buffers
    return 1.2 if (model.hidden_dim >= 8192 or model.layers >= 80) else 1.0


def kv_cache_gb(model, quantization, context_length, streams=1, kv_overhead_percent=0.0):
    """KV cache for ``streams`` concurrent requests, K and V for every layer."""
    base = (2 * model.layers * model.hidden_dim * context_length * streams
            * kv_bytes_per_value(quantization)) / GIB
    return base * (1 + (kv_overhead_percent or 0) / 100)


def activation_gb(model, quantization, context_length, batch_size):
    return (batch_size * context_length * model.hidden_dim * kv_bytes_per_value(quantization)
            * activation_overhead_factor(model)) / GIB


def weights_gb(model, quantization):
    params = model.params or DEFAULT_PARAMS
    return (params * weight_bytes_per_param(quantization)) / GIB


def estimate_memory(model, quantization, context_length, concurrency, batch_size, overhead=None):
    """
    Calculate the memory breakdown for serving ``model``.

    Args:
        model: resolved ModelSpec (None means the 7B default)
        quantization: Quantization or its string value
        context_length: tokens per request
        concurrency: simultaneous request streams, each with its own KV cache
        batch_size: batch used for activation sizing
        overhead: OverheadConfig, defaults to 30% system overhead

    Returns:
        MemoryBreakdown in GB
    """
    if model is None:
        model = resolve_model()
    overhead = overhead or OverheadConfig()

    context_length = max(1, int(context_length))
    concurrency = max(1, int(concurrency))
    batch_size = max(1, int(batch_size))

    weights = weights_gb(model, quantization)
    cache = kv_cache_gb(model, quantization, context_length, concurrency, overhead.kv_overhead_percent)
    activation = activation_gb(model, quantization, context_length, batch_size)

    subtotal = weights + cache + activation
    overhead_gb = subtotal * (overhead.system_overhead_percent / 100) + overhead.system_overhead_fixed_gb
    total = subtotal + overhead_gb

    return MemoryBreakdown(
        weights_gb=weights,
        cache_gb=cache,
        activation_gb=activation,
        overhead_gb=overhead_gb,
        total_gb=total,
    )


def estimate_workload_memory(workload, catalog=None):
    return estimate_memory(
        workload.resolve_model(catalog),
        workload.quantization,
        workload.context_length,
        workload.concurrency,
        workload.batch_size,
        workload.overhead,
    )


def estimate_performance(memory, quantization, concurrency, reference_gpu=None):
    """
    Estimate decode throughput from a memory breakdown.

    Generation is treated as memory-bandwidth bound: every token streams the
    resident memory once. ``reference_gpu`` defaults to the fastest reference GPU.
    """
    reference_gpu = reference_gpu or REFERENCE_GPUS[0]
    bandwidth = reference_gpu.bandwidth_gbs
    efficiency = compute_efficiency(quantization)

    tokens_per_second = max(1.0, bandwidth / (memory.total_gb * efficiency))

    if bandwidth > 0:
        utilization_raw = (memory.weights_gb * tokens_per_second) / bandwidth * 100
    else:
        utilization_raw = 0.0
    utilization = float(np.clip(utilization_raw, 0, 95))

    return PerformanceEstimate(
        tokens_per_second=tokens_per_second,
        bandwidth_utilization_percent=utilization,
        effective_tokens_per_second_per_request=tokens_per_second / max(1, concurrency),
    )


def get_optimization_tips(memory, performance, workload):
    """Return advice records ({type, title, message}) for the current workload."""
    tips = []

    if memory.total_gb > 40:
        tips.append({
            "type": "warning",
            "title": "High Memory Usage",
            "message": "Consider using INT8 or INT4 quantization to reduce memory requirements by 50-75%.",
        })

    if workload.context_length > 32000:
        tips.append({
            "type": "info",
            "title": "Large Context Window",
            "message": "For very large contexts, consider gradient checkpointing to trade compute for memory.",
        })

    if workload.concurrency > 100:
        tips.append({
            "type": "info",
            "title": "High Concurrency",
            "message": "Consider model parallelism or multiple GPU setups for better performance.",
        })

    if performance.rounded()["bandwidth_utilization"] < 50:
        tips.append({
            "type": "success",
            "title": "Good Utilization",
            "message": "You have headroom for larger batch sizes to improve throughput.",
        })

    if not tips:
        tips.append({
            "type": "success",
            "title": "Optimal Configuration",
            "message": "Your current configuration appears well-balanced for the selected model.",
        })

    return tips
