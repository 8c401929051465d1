"""
Self-host calculator.

A simpler sizing path than calc/recommend: the user picks a GPU, how many of
them, and a model memory footprint, and gets back how many concurrent
requests fit plus a rough tokens/sec figure. It uses its own architecture
heuristic, tuned separately from the serving calculator's.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, NamedTuple

import numpy as np
import pandas as pd

from catalog import find_llm_record, slugify

logger = logging.getLogger(__name__)

GIB = 1024 ** 3

DEFAULT_MODEL_MEMORY_GB = 14
DEFAULT_SYSTEM_OVERHEAD_GB = 2
KV_BYTES_PER_ELEMENT = 2  # KV is kept in fp16/bf16 whatever the weight precision

# Multiplier applied to the fp16 model memory
QUANTIZATION_LABELS = {
    1.0: "FP16/BF16",
    0.5: "INT8/FP8",
    0.25: "INT4/MXFP4",
    0.125: "INT2",
}

SCENARIO_CONTEXTS = [8192, 16384, 32768, 65536, 131072]
MIN_SCENARIO_CONTEXT = 8192
MIN_SCENARIO_ROWS = 10
MAX_EXTRA_GPU_COUNTS = 200

CAPACITY_SUGGESTIONS = [
    "Reduce model memory via stronger quantization (e.g., INT4/FP8)",
    "Choose a smaller parameter model or MoE with lower active memory",
    "Lower the context length to shrink KV cache per request",
    "Add more GPUs or use a GPU with more VRAM",
]

# Fallback memory bandwidth in GB/s when the catalog record has none
GPU_BANDWIDTH_GBS = {
    # RTX 40 Series
    "rtx4090": 1008,
    "rtx4080": 736,
    "rtx4070ti": 504,
    "rtx4070": 504,
    "rtx4060ti": 288,
    "rtx4060ti8": 288,
    # RTX 30 Series
    "rtx3090ti": 936,
    "rtx3090": 936,
    "rtx3080ti": 912,
    "rtx3080": 760,
    # NVIDIA Professional
    "a100": 1600,  # 40GB variant
    "a100-80": 2000,
    "h100": 3000,
    "v100": 900,
    "rtx6000": 960,  # RTX 6000 Ada
    "l40s": 864,
    "l40": 864,
    "l4": 300,
    "t4": 320,
    "h200": 4915,
    "h20": 4096,
    # AMD Radeon
    "rx7900xtx": 960,
    "rx7900xt": 800,
    # AMD Instinct
    "mi300x": 5325,
    "mi250x": 3200,
}


class Architecture(NamedTuple):
    layers: int
    hidden_dim: int


DEFAULT_ARCHITECTURE = Architecture(32, 4096)


def quantization_label(multiplier):
    return QUANTIZATION_LABELS.get(float(multiplier), f"{multiplier}x")


def parse_params_from_label(label):
    """
    Read parameter counts (billions) out of a model label.

    Understands "70B", "1T" and MoE labels such as "235B-A22B". Returns
    ``(full, active)``; either may be None.
    """
    label = str(label or "")
    full = None
    trillions = re.search(r"(\d+(?:\.\d+)?)\s*T", label, re.IGNORECASE)
    billions = re.search(r"(\d+(?:\.\d+)?)\s*B", label, re.IGNORECASE)
    if trillions:
        full = float(trillions.group(1)) * 1000
    elif billions:
        full = float(billions.group(1))

    active = None
    moe = re.search(r"-A(\d+(?:\.\d+)?)B", label, re.IGNORECASE)
    if moe:
        active = float(moe.group(1))
    return full, active


def selfhost_heuristic_architecture(params_billions):
    """Architecture guess for the self-host calculator, keyed on billions of params."""
    if not params_billions:
        return DEFAULT_ARCHITECTURE
    if params_billions <= 4:
        return Architecture(28, 3072)
    if params_billions <= 8:
        return Architecture(32, 4096)
    if params_billions <= 15:
        return Architecture(40, 4096)
    if params_billions <= 35:
        return Architecture(64, 5120)
    if params_billions <= 75:
        return Architecture(80, 8192)
    if params_billions <= 130:
        return Architecture(88, 12288)
    # very large
    return Architecture(60, 7168)


def resolve_selfhost_architecture(label, llm_catalog=None):
    """Catalog match by name, then the label heuristic, then the 32x4096 default."""
    record = find_llm_record(label, llm_catalog)
    if record is not None:
        return Architecture(
            max(1, record.num_layers or DEFAULT_ARCHITECTURE.layers),
            max(1, record.hidden_size or DEFAULT_ARCHITECTURE.hidden_dim),
        )
    billions = re.search(r"(\d+(?:\.\d+)?)\s*B", str(label or ""), re.IGNORECASE)
    params = float(billions.group(1)) if billions else None
    logger.debug("No catalog entry for %r, using heuristic for %sB", label, params)
    return selfhost_heuristic_architecture(params)


def compute_kv_cache_gb(context_length, arch, bytes_per_element=KV_BYTES_PER_ELEMENT, overhead_fraction=0.0):
    """
    KV cache for one request.

    kv_bytes = context_len * layers * 2 (K+V) * hidden * bytes_per_element
    """
    layers = max(1, int(arch.layers or 0) or DEFAULT_ARCHITECTURE.layers)
    hidden = max(1, int(arch.hidden_dim or 0) or DEFAULT_ARCHITECTURE.hidden_dim)
    bytes_per_element = bytes_per_element or KV_BYTES_PER_ELEMENT
    overhead = max(0.0, overhead_fraction or 0.0)

    kv_bytes = context_length * layers * 2 * hidden * bytes_per_element
    return kv_bytes / GIB * (1 + overhead)


def preset_model_memory(total_gb, active_gb=None, offloading=False):
    """MoE presets use active-expert memory when offloading is on."""
    if active_gb:
        if offloading:
            return float(active_gb)
        return float(total_gb or DEFAULT_MODEL_MEMORY_GB)
    return float(total_gb or DEFAULT_MODEL_MEMORY_GB)


def model_memory_from_params(params_billions):
    # Rough estimate: 2GB per billion parameters in FP16
    return float(params_billions or 7) * 2


def preset_memory_from_record(record):
    """FP16 (total, active) memory for a catalog model; active is None for dense models."""
    total = model_memory_from_params(record.params_billions)
    active = record.active_params_billions
    return total, (model_memory_from_params(active) if active else None)


def memory_label(model_memory_gb):
    """Size label such as "7B" for an FP16 footprint, used for architecture lookup."""
    return f"{model_memory_gb / 2:g}B"


class ModelInput(NamedTuple):
    memory_gb: float
    label: str
    params_b: float  # drives the size-efficiency factor


def resolve_model_input(input_type, params_b=None, memory_gb=None):
    """Model memory, lookup label and efficiency params for the parameters and memory input modes."""
    if input_type == "parameters":
        memory = model_memory_from_params(params_b)
        params = params_b or 7
    else:
        memory = float(memory_gb or DEFAULT_MODEL_MEMORY_GB)
        # parameter count is unknown here
        params = 7
    return ModelInput(memory, memory_label(memory), params)


@dataclass(frozen=True)
class SelfHostCapacity:
    total_vram_gb: float
    model_memory_gb: float
    kv_cache_per_request_gb: float
    available_memory_gb: float
    max_concurrent_requests: float
    context_length: int
    suggestions: List[str]

    @property
    def model_exceeds_vram(self):
        return self.available_memory_gb < 0

    @property
    def meets_minimum(self):
        return not self.model_exceeds_vram and self.max_concurrent_requests >= 1


def estimate_selfhost_capacity(gpu_count, vram_per_gpu_gb, model_memory_gb, quantization_multiplier,
                               context_length, arch, kv_overhead_fraction=0.0,
                               system_overhead_gb=DEFAULT_SYSTEM_OVERHEAD_GB):
    """How many requests of ``context_length`` tokens fit next to the model."""
    if context_length < 1:
        raise ValueError(f"context_length must be >= 1, got {context_length}")
    if gpu_count < 1:
        raise ValueError(f"gpu_count must be >= 1, got {gpu_count}")

    total_vram = gpu_count * vram_per_gpu_gb
    adjusted_model_memory = model_memory_gb * quantization_multiplier
    kv_per_request = compute_kv_cache_gb(context_length, arch, KV_BYTES_PER_ELEMENT, kv_overhead_fraction)

    available = total_vram - system_overhead_gb - adjusted_model_memory
    max_requests = available / kv_per_request

    meets = available >= 0 and max_requests >= 1
    if not meets:
        logger.info("%d x %.0fGB cannot serve a single %d-token request", gpu_count, vram_per_gpu_gb, context_length)

    return SelfHostCapacity(
        total_vram_gb=total_vram,
        model_memory_gb=adjusted_model_memory,
        kv_cache_per_request_gb=kv_per_request,
        available_memory_gb=available,
        max_concurrent_requests=max(0.0, max_requests),
        context_length=context_length,
        suggestions=[] if meets else list(CAPACITY_SUGGESTIONS),
    )


def gpu_bandwidth(gpu_key, gpus=None):
    """
    Memory bandwidth in GB/s for a GPU slug or name.

    The catalog record wins; the built-in table is the fallback; unknown GPUs
    report 0.
    """
    if not gpu_key:
        return 0
    key = str(gpu_key).lower()
    for gpu in gpus or []:
        if key in ((gpu.slug or slugify(gpu.name)), gpu.name.lower()) and gpu.bandwidth_gbs > 0:
            return gpu.bandwidth_gbs
    return GPU_BANDWIDTH_GBS.get(key, 0)


@dataclass(frozen=True)
class SelfHostPerformance:
    tokens_per_second: float
    bandwidth_gbs: float
    efficiency: float
    quant_boost: float
    context_impact: float
    multi_gpu_scaling: float

    @property
    def generation_time_100_tokens(self):
        if self.tokens_per_second <= 0:
            return float("inf")
        return 100 / self.tokens_per_second


def estimate_selfhost_performance(model_memory_gb, quantization_multiplier, context_length,
                                  bandwidth_gbs, gpu_count=1, model_params_b=7):
    """
    Tokens/sec heuristic for the self-host calculator.

    ``model_memory_gb`` is the already quantized footprint. Returns None when
    there is no bandwidth figure for the GPU.
    """
    bandwidth = (bandwidth_gbs or 0) * gpu_count
    if not bandwidth or model_memory_gb <= 0:
        return None

    # Larger models are less efficient
    if model_params_b <= 7:
        efficiency = 0.85
    elif model_params_b <= 30:
        efficiency = 0.7
    elif model_params_b <= 70:
        efficiency = 0.5
    else:
        efficiency = 0.3

    if quantization_multiplier <= 0.25:
        quant_boost = 2.5
    elif quantization_multiplier <= 0.3:
        quant_boost = 2.2
    elif quantization_multiplier <= 0.5:
        quant_boost = 1.8
    elif quantization_multiplier <= 0.75:
        quant_boost = 1.3
    else:
        quant_boost = 1.0

    if context_length >= 131072:
        context_impact = 0.3
    elif context_length >= 32768:
        context_impact = 0.6
    elif context_length >= 8192:
        context_impact = 0.85
    else:
        context_impact = 1.0

    # Multi-GPU scaling is not linear
    multi_gpu_scaling = 0.85 + (0.15 / gpu_count) if gpu_count > 1 else 1.0

    base_speed = (bandwidth / model_memory_gb) * efficiency * quant_boost * context_impact * multi_gpu_scaling

    return SelfHostPerformance(
        tokens_per_second=base_speed * 0.6,  # conservative for datacenter GPUs
        bandwidth_gbs=bandwidth,
        efficiency=efficiency,
        quant_boost=quant_boost,
        context_impact=context_impact,
        multi_gpu_scaling=multi_gpu_scaling,
    )


def performance_rating(tokens_per_second):
    """Return (label, css class) for a tokens/sec figure."""
    if tokens_per_second > 100:
        return "Excellent", "excellent"
    elif tokens_per_second > 50:
        return "Good", "good"
    elif tokens_per_second > 25:
        return "Moderate", "moderate"
    elif tokens_per_second > 10:
        return "Slow", "slow"
    return "Very Slow", "very-slow"


DEFAULT_PERFORMANCE_NOTES = [
    "Use INT4/FP8 where acceptable to improve speed",
    "Shorter context reduces KV cache size and boosts throughput",
    "Higher memory bandwidth GPUs deliver more tokens/sec",
]


def moe_note(offloading, quantization_multiplier, active_gb=None, total_gb=None):
    if offloading:
        if active_gb is not None:
            return f"MoE offloading ON: VRAM and performance use active experts (~{active_gb * quantization_multiplier:.1f} GB)"
        return "MoE offloading ON: Using active experts for calculations"
    if total_gb is not None:
        return f"MoE offloading OFF: VRAM and performance use full model (~{total_gb * quantization_multiplier:.1f} GB)"
    return "MoE offloading OFF: Using full model size for calculations"


def performance_notes(tokens_per_second, context_length, gpu_count, moe=None):
    notes = []
    if moe:
        notes.append(moe)
    if tokens_per_second < 25:
        notes.append("Consider stronger quantization (INT4) for better speed")
    if context_length > 32768 and tokens_per_second < 50:
        notes.append("Reduce context length for faster generation")
    if gpu_count == 1 and tokens_per_second < 30:
        notes.append("Consider adding more GPUs for better performance")
    if tokens_per_second > 50:
        notes.append("Performance should be smooth for most use cases")
    return notes or list(DEFAULT_PERFORMANCE_NOTES)


def format_params(full_b, active_b=None):
    """Display string such as "235 / 22" for MoE models."""
    def fmt(n):
        if n is None or not np.isfinite(n):
            return ""
        if abs(n - round(n)) < 1e-9:
            return str(int(round(n)))
        return f"{n:.1f}"

    full, active = fmt(full_b), fmt(active_b)
    if full and active and full != active:
        return f"{full} / {active}"
    return full or active


SCENARIO_COLUMNS = [
    "model", "model_params_b", "gpu", "gpu_count", "quant", "context",
    "max_concurrent", "tokens_per_sec", "gen_time_s",
]


def _scenario_row(gpu_count, context, vram_per_gpu_gb, model_memory_gb, quantization_multiplier,
                  arch, kv_overhead_fraction, system_overhead_gb, bandwidth_gbs, model_params_b):
    available = gpu_count * vram_per_gpu_gb - system_overhead_gb - model_memory_gb
    kv_per_request = compute_kv_cache_gb(context, arch, KV_BYTES_PER_ELEMENT, kv_overhead_fraction)
    max_requests = available / kv_per_request
    perf = estimate_selfhost_performance(model_memory_gb, quantization_multiplier, context,
                                         bandwidth_gbs, gpu_count, model_params_b)
    tps = perf.tokens_per_second if perf else 0.0

    runnable = available >= kv_per_request and max_requests >= 1 and context >= MIN_SCENARIO_CONTEXT and tps > 0
    if not runnable:
        return None
    return {
        "gpu_count": gpu_count,
        "context": context,
        "max_concurrent": max(0.0, max_requests),
        "tokens_per_sec": tps,
        "gen_time_s": 100 / tps,
    }


def build_scenario_table(model_label, gpu_label, vram_per_gpu_gb, current_gpu_count, model_memory_gb,
                         quantization_multiplier, arch, bandwidth_gbs, kv_overhead_fraction=0.0,
                         system_overhead_gb=DEFAULT_SYSTEM_OVERHEAD_GB, model_params_b=7,
                         params_display=""):
    """
    Performance across GPU counts and context lengths.

    ``model_memory_gb`` is the quantized footprint. GPU counts cover the
    current count +-5 and are extended upward until at least ten runnable
    scenarios exist.
    """
    columns = SCENARIO_COLUMNS
    if vram_per_gpu_gb <= 0:
        return pd.DataFrame(columns=columns)

    args = (vram_per_gpu_gb, model_memory_gb, quantization_multiplier, arch,
            kv_overhead_fraction, system_overhead_gb, bandwidth_gbs, model_params_b)

    rows = []
    counts = list(range(max(1, current_gpu_count - 5), current_gpu_count + 6))
    for count in counts:
        for context in SCENARIO_CONTEXTS:
            row = _scenario_row(count, context, *args)
            if row:
                rows.append(row)

    count = counts[-1] + 1
    extra = 0
    while len(rows) < MIN_SCENARIO_ROWS and extra < MAX_EXTRA_GPU_COUNTS:
        for context in SCENARIO_CONTEXTS:
            row = _scenario_row(count, context, *args)
            if row:
                rows.append(row)
                if len(rows) >= MIN_SCENARIO_ROWS:
                    break
        count += 1
        extra += 1

    df = pd.DataFrame(rows, columns=[c for c in columns if c not in ("model", "model_params_b", "gpu", "quant")])
    df.insert(0, "model", model_label)
    df.insert(1, "model_params_b", params_display)
    df.insert(2, "gpu", gpu_label)
    df.insert(4, "quant", quantization_label(quantization_multiplier))
    return df[columns]


def filter_scenarios(df, context=None, min_tps=None):
    mask = pd.Series(True, index=df.index)
    if context is not None:
        mask &= df["context"] == int(context)
    if min_tps is not None:
        mask &= df["tokens_per_sec"] >= float(min_tps)
    return df[mask]


def sort_scenarios(df, key, ascending=True):
    if key not in df.columns:
        return df
    if pd.api.types.is_numeric_dtype(df[key]):
        return df.sort_values(key, ascending=ascending, kind="stable")
    return df.sort_values(key, ascending=ascending, kind="stable", key=lambda s: s.astype(str).str.lower())


CSV_HEADERS = [
    "Model", "Model Parameters (B)", "GPU", "Number of GPUs", "Quantization", "Context Length",
    "Max Concurrent Requests", "Tokens per Second", "Time for 100 Tokens (s)",
]


def _context_label(n):
    return f"{round(n / 1024)}k" if n >= 1024 else str(n)


def scenarios_to_csv(df):
    """CSV export of the scenario table (headers and formats as shown to users)."""
    out = pd.DataFrame({
        "Model": df["model"],
        "Model Parameters (B)": df["model_params_b"],
        "GPU": df["gpu"],
        "Number of GPUs": df["gpu_count"],
        "Quantization": df["quant"],
        "Context Length": df["context"].map(_context_label),
        "Max Concurrent Requests": df["max_concurrent"].map(lambda v: f"{v:.2f}"),
        "Tokens per Second": df["tokens_per_sec"].map(lambda v: f"{v:.2f}"),
        "Time for 100 Tokens (s)": df["gen_time_s"].map(lambda v: f"{v:.1f}" if np.isfinite(v) else ""),
    }, columns=CSV_HEADERS)
    return out.to_csv(index=False, lineterminator="\n").rstrip("\n")
