"""Model and GPU catalogs used by the calculators.

Both catalogs ship with a small built-in table so the estimators keep working
when the JSON catalogs under ``data/`` are missing or unreadable.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, replace
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_PARAMS = 7.0e9


def round_half_up(value):
    """Round to the nearest integer with .5 going up (display rounding)."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class ModelSpec:
    """Architecture of one LLM."""

    name: str
    params: float
    layers: int
    hidden_dim: int
    heads: int


@dataclass(frozen=True)
class GPUSpec:
    """One accelerator record. Bandwidth is in GB/s, prices in USD."""

    name: str
    vram_gb: float
    bandwidth_gbs: float
    price_usd: Optional[float] = None
    cloud_price_per_hour_usd: Optional[float] = None
    vendor: Optional[str] = None
    architecture: Optional[str] = None
    tdp_w: Optional[float] = None
    slug: Optional[str] = None

    def with_vram(self, vram_gb):
        """Return a copy with the VRAM replaced (caller-supplied override)."""
        return replace(self, vram_gb=vram_gb)


@dataclass(frozen=True)
class LLMRecord:
    """Entry of the LLM JSON catalog (used by the self-host calculator)."""

    name: str
    params_billions: Optional[float] = None
    num_layers: Optional[int] = None
    hidden_size: Optional[int] = None
    num_heads: Optional[int] = None
    moe_num_experts: Optional[int] = None
    moe_active_experts: Optional[int] = None

    @property
    def active_params_billions(self):
        """Active parameter count for MoE models, None for dense ones."""
        if self.params_billions is None or not self.moe_num_experts or self.moe_active_experts is None:
            return None
        return self.params_billions * (self.moe_active_experts / self.moe_num_experts)


MODELS = {
    "qwen-ds-7b": ModelSpec("qwen-ds-7b", 7.0e9, 32, 4096, 32),
    "qwen-ds-14b": ModelSpec("qwen-ds-14b", 14.0e9, 40, 5120, 40),
    "qwen-ds-32b": ModelSpec("qwen-ds-32b", 32.0e9, 80, 8192, 64),
    # Qwen 3 series
    "qwen3-7b": ModelSpec("qwen3-7b", 7.0e9, 32, 4096, 32),
    "qwen3-14b": ModelSpec("qwen3-14b", 14.0e9, 40, 5120, 40),
    "qwen3-32b": ModelSpec("qwen3-32b", 32.0e9, 80, 8192, 64),
    # DeepSeek V3 (671B)
    "deepseek-v3": ModelSpec("deepseek-v3", 671.0e9, 120, 12288, 120),
}

# Ordered fastest first: the first entry is the reference GPU for throughput.
REFERENCE_GPUS = [
    GPUSpec("H200", 141, 4800, price_usd=35000, cloud_price_per_hour_usd=6.50, vendor="NVIDIA", slug="h200"),
    GPUSpec("H100", 80, 3350, price_usd=30000, cloud_price_per_hour_usd=5.50, vendor="NVIDIA", slug="h100"),
    GPUSpec("H20", 96, 2000, price_usd=25000, cloud_price_per_hour_usd=4.50, vendor="NVIDIA", slug="h20"),
    GPUSpec("A100", 80, 2039, price_usd=15000, cloud_price_per_hour_usd=3.50, vendor="NVIDIA", slug="a100"),
    GPUSpec("L40", 48, 846, price_usd=3500, cloud_price_per_hour_usd=1.80, vendor="NVIDIA", slug="l40"),
]


def heuristic_architecture(params):
    """
    Estimate (layers, hidden_dim, heads) from a raw parameter count.

    Used by the serving calculator whenever the model is not in the catalog,
    which makes it the only architecture source for custom parameter counts.
    """
    p = params or DEFAULT_PARAMS
    if p <= 7.0e9:
        return 32, 4096, 32
    elif p <= 13.0e9:
        return 40, 5120, 40
    elif p <= 70.0e9:
        return 80, 8192, 64
    elif p <= 175.0e9:
        return 96, 12288, 96
    else:
        return 120, 12288, 120


def parse_memory_gb(value):
    """Parse a VRAM field such as ``80`` or ``"40 / 80"``; the largest number wins."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value != value:  # NaN
            return None
        return round_half_up(float(value))
    numbers = []
    for token in re.findall(r"[\d.]+", str(value)):
        try:
            numbers.append(float(token))
        except ValueError:
            continue
    if not numbers:
        return None
    return round_half_up(max(numbers))


def parse_bandwidth_gbs(record):
    """Return memory bandwidth in GB/s from a catalog record, or None."""
    gbs = record.get("memory_bandwidth_gbs")
    if isinstance(gbs, (int, float)) and not isinstance(gbs, bool) and gbs > 0:
        return float(gbs)

    tbps_raw = record.get("memory_bandwidth_tbps")
    tbps = None
    if isinstance(tbps_raw, (int, float)) and not isinstance(tbps_raw, bool):
        tbps = float(tbps_raw)
    elif tbps_raw is not None:
        try:
            tbps = float(re.sub(r"[^\d.]", "", str(tbps_raw)))
        except ValueError:
            tbps = None
    if tbps and tbps > 0:
        return float(round_half_up(tbps * 1024))
    return None


VENDOR_PREFIX = re.compile(r"^(NVIDIA|AMD|Huawei|Baidu|Alibaba|Biren)\s+", re.IGNORECASE)


def base_name(name):
    """Strip the vendor prefix from a GPU name."""
    return VENDOR_PREFIX.sub("", str(name or "")).strip()


def slugify(name):
    return re.sub(r"[^\w]+", "-", base_name(name).lower())


def group_label(gpu):
    """Group heading for a GPU in selection lists."""
    vendor = (gpu.vendor or "").strip().lower()
    name = base_name(gpu.name)
    if re.match(r"^rtx\s*40", name, re.IGNORECASE):
        return "NVIDIA RTX 40 Series"
    if re.match(r"^rtx\s*30", name, re.IGNORECASE):
        return "NVIDIA RTX 30 Series"
    if vendor == "nvidia":
        return "NVIDIA Professional"
    if vendor == "amd":
        return "AMD Radeon"
    return gpu.vendor if gpu.vendor else "Other Accelerators"


def _optional_float(value):
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_int(value):
    number = _optional_float(value)
    return int(number) if number is not None else None


def _read_json(path, key):
    """Read a catalog file that is either a list or ``{key: [...]}``."""
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as e:
        logger.warning("Could not load catalog %s: %s", path, e)
        return []
    if isinstance(data, dict):
        data = data.get(key)
    if not isinstance(data, list):
        logger.warning("Catalog %s has no %r list", path, key)
        return []
    return [item for item in data if isinstance(item, dict)]


def gpu_from_record(record):
    """Build a GPUSpec from a catalog record; None if it has no usable VRAM."""
    name = str(record.get("name") or "").strip()
    if not name:
        return None
    vram = parse_memory_gb(record.get("vram_gb", record.get("memory_gb")))
    if not vram or vram <= 0:
        return None
    return GPUSpec(
        name=name,
        vram_gb=vram,
        bandwidth_gbs=parse_bandwidth_gbs(record) or 0.0,
        price_usd=_optional_float(record.get("price_usd")),
        cloud_price_per_hour_usd=_optional_float(record.get("cloud_price_per_hour_usd")),
        vendor=record.get("vendor"),
        architecture=record.get("architecture"),
        tdp_w=_optional_float(record.get("tdp_w")),
        slug=slugify(name),
    )


def load_gpu_catalog(path):
    """Load GPU records from JSON. Malformed records are skipped."""
    gpus = []
    for record in _read_json(path, "gpus"):
        gpu = gpu_from_record(record)
        if gpu is None:
            logger.warning("Skipping GPU record without name or VRAM: %r", record.get("name"))
            continue
        gpus.append(gpu)
    logger.info("Loaded %d GPUs from %s", len(gpus), path)
    return gpus


def load_llm_catalog(path):
    """Load LLM architecture records from JSON."""
    models = []
    for record in _read_json(path, "models"):
        name = record.get("model_name") or record.get("name")
        if not name:
            continue
        moe = record.get("moe") or {}
        enabled = isinstance(moe, dict) and moe.get("enabled")
        models.append(LLMRecord(
            name=str(name),
            params_billions=_optional_float(
                record.get("parameter_count_billion", record.get("parameter_count_billions"))
            ),
            num_layers=_optional_int(record.get("num_layers")),
            hidden_size=_optional_int(record.get("hidden_size")),
            num_heads=_optional_int(record.get("num_attention_heads")),
            moe_num_experts=_optional_int(moe.get("num_experts")) if enabled else None,
            moe_active_experts=_optional_int(moe.get("active_experts")) if enabled else None,
        ))
    logger.info("Loaded %d LLMs from %s", len(models), path)
    return models


def merge_gpu_catalogs(reference, extra):
    """
    Append catalog GPUs to the reference list, skipping any whose base name
    or slug is already present.
    """
    merged = list(reference)
    for gpu in extra:
        base = base_name(gpu.name)
        if not base:
            continue
        slug = gpu.slug or slugify(gpu.name)
        pattern = re.compile(r"(^|[^\w])" + re.escape(base.lower()) + r"([^\w]|$)", re.IGNORECASE)
        exists = any(
            (known.slug or slugify(known.name)) == slug or pattern.search(known.name.lower())
            for known in merged
        )
        if exists:
            continue
        merged.append(gpu)
    return merged


def normalize_model_name(name):
    s = str(name or "").lower()
    s = re.sub(r"\(.*?\)", "", s)
    s = re.sub(r"distilled|instruct|base|small|medium|large|chat|oss", "", s)
    s = re.sub(r"\s+", "-", s)
    s = re.sub(r"[^a-z0-9\-x]", "", s)
    s = re.sub(r"--+", "-", s)
    return s.strip()


def find_llm_record(label, records):
    """Exact normalised match first, then containment in either direction."""
    if not records:
        return None
    norm = normalize_model_name(label)
    if not norm:
        return None
    for record in records:
        if normalize_model_name(record.name) == norm:
            return record
    for record in records:
        candidate = normalize_model_name(record.name)
        if candidate in norm or norm in candidate:
            return record
    return None
