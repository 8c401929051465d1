"""
GPU recommendation: how many GPUs, servers and racks each candidate needs to
serve the requested concurrency.
"""

import logging
from dataclasses import asdict, dataclass

import numpy as np

from calc import GIB, activation_gb, kv_bytes_per_value, round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InfraDefaults:
    gpus_per_server: int = 8       # typical DGX/enterprise servers
    servers_per_rack: int = 8      # rough estimate for 42U racks
    mem_utilization_max: float = 0.8  # target VRAM utilization per GPU
    overhead_factor: float = 1.3   # safety margin on weights and per-request memory
    top_n: int = 5


@dataclass(frozen=True)
class GPURecommendation:
    gpu: object  # catalog.GPUSpec, with any VRAM override applied
    shards_per_replica: int
    requests_per_replica: int
    total_gpus_needed: int
    servers_needed: int
    racks_needed: int
    utilization_percent: int
    compatible: bool

    @property
    def name(self):
        return self.gpu.name

    @property
    def vram_gb(self):
        return self.gpu.vram_gb

    def as_dict(self):
        row = asdict(self.gpu)
        row.update({
            "shards_per_replica": self.shards_per_replica,
            "requests_per_replica": self.requests_per_replica,
            "total_gpus_needed": self.total_gpus_needed,
            "servers_needed": self.servers_needed,
            "racks_needed": self.racks_needed,
            "utilization_percent": self.utilization_percent,
            "compatible": self.compatible,
        })
        return row


def per_request_gb(model, workload):
    """
    Memory one extra request adds: its own KV cache (with KV overhead) plus
    the batch-scaled activation term.
    """
    kv = (2 * model.layers * model.hidden_dim * workload.context_length
          * kv_bytes_per_value(workload.quantization)) / GIB
    kv *= 1 + workload.kv_overhead_percent / 100
    act = activation_gb(model, workload.quantization, workload.context_length, workload.batch_size)
    return kv + act


def size_gpu(gpu, weights_gb, per_req_gb, total_gb, concurrency, infra):
    """Shard and replica sizing for a single GPU candidate."""
    overhead = infra.overhead_factor
    mem_budget = gpu.vram_gb * infra.mem_utilization_max

    # Minimum GPUs required just to host the weights (tensor parallel shards)
    shards = max(1, int(np.ceil((weights_gb * overhead) / mem_budget)))

    usable = mem_budget * shards
    headroom = max(0.0, usable - weights_gb * overhead)
    requests_per_group = max(0, int(np.floor(headroom / (per_req_gb * overhead))))

    if requests_per_group > 0:
        groups = int(np.ceil(concurrency / requests_per_group))
    else:
        # Nothing fits next to the weights: one shard group per request
        groups = concurrency
    total_gpus = groups * shards

    servers = int(np.ceil(total_gpus / infra.gpus_per_server))
    racks = int(np.ceil(servers / infra.servers_per_rack))

    return GPURecommendation(
        gpu=gpu,
        shards_per_replica=shards,
        requests_per_replica=requests_per_group,
        total_gpus_needed=total_gpus,
        servers_needed=servers,
        racks_needed=racks,
        utilization_percent=round_half_up(total_gb / gpu.vram_gb * 100),
        compatible=(weights_gb * overhead) <= mem_budget and requests_per_group > 0,
    )


def _apply_vram_override(gpu, workload):
    if workload.vram_override_gb is None:
        return gpu
    if workload.gpu_name and workload.gpu_name != gpu.name:
        return gpu
    return gpu.with_vram(workload.vram_override_gb)


def recommend_gpus(memory, workload, gpu_catalog, infra=None, model_catalog=None):
    """
    Rank GPU candidates for a workload.

    Compatible GPUs come first, then fewer total GPUs. The sort is stable, so
    ties keep catalog order. Only the top ``infra.top_n`` are returned.
    """
    infra = infra or InfraDefaults()
    model = workload.resolve_model(model_catalog)
    per_req = per_request_gb(model, workload)

    recommendations = []
    for gpu in gpu_catalog:
        gpu = _apply_vram_override(gpu, workload)
        if not gpu.vram_gb or gpu.vram_gb <= 0:
            logger.warning("Skipping GPU %s without VRAM", gpu.name)
            continue
        recommendations.append(
            size_gpu(gpu, memory.weights_gb, per_req, memory.total_gb, workload.concurrency, infra)
        )

    recommendations.sort(key=lambda r: (not r.compatible, r.total_gpus_needed))
    return recommendations[:infra.top_n]


@dataclass(frozen=True)
class DeploymentCheck:
    """Sizing for the GPU the user picked, against the GPUs they have."""

    recommendation: GPURecommendation
    gpu_count: int

    @property
    def sufficient(self):
        return self.recommendation.compatible and self.gpu_count >= self.recommendation.total_gpus_needed

    @property
    def shortfall(self):
        return max(0, self.recommendation.total_gpus_needed - self.gpu_count)


def check_deployment(memory, workload, gpu_catalog, infra=None, model_catalog=None):
    """Size the GPU named by ``workload.gpu_name``; None when no GPU is named or it is not in the catalog."""
    if not workload.gpu_name:
        return None
    gpu = next((g for g in gpu_catalog if g.name == workload.gpu_name), None)
    if gpu is None:
        logger.warning("GPU %s not in catalog", workload.gpu_name)
        return None
    gpu = _apply_vram_override(gpu, workload)

    infra = infra or InfraDefaults()
    per_req = per_request_gb(workload.resolve_model(model_catalog), workload)
    rec = size_gpu(gpu, memory.weights_gb, per_req, memory.total_gb, workload.concurrency, infra)
    return DeploymentCheck(recommendation=rec, gpu_count=workload.gpu_count)
