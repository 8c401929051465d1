import json

import pytest

from catalog import (
    REFERENCE_GPUS,
    GPUSpec,
    LLMRecord,
    base_name,
    find_llm_record,
    group_label,
    load_gpu_catalog,
    load_llm_catalog,
    merge_gpu_catalogs,
    parse_bandwidth_gbs,
    parse_memory_gb,
    slugify,
)


@pytest.mark.parametrize("value, expected", [
    (24, 24),
    (80.4, 80),
    ("40 / 80", 80),
    ("141 GB", 141),
    ("n/a", None),
    (None, None),
    (True, None),
])
def test_parse_memory(value, expected):
    assert parse_memory_gb(value) == expected


def test_parse_bandwidth():
    assert parse_bandwidth_gbs({"memory_bandwidth_gbs": 900}) == 900
    assert parse_bandwidth_gbs({"memory_bandwidth_tbps": 3.35}) == 3430
    assert parse_bandwidth_gbs({"memory_bandwidth_tbps": "2.0 TB/s"}) == 2048
    assert parse_bandwidth_gbs({"memory_bandwidth_gbs": 0, "memory_bandwidth_tbps": 1}) == 1024
    assert parse_bandwidth_gbs({}) is None


def test_names():
    assert base_name("NVIDIA H100") == "H100"
    assert base_name("huawei Ascend 910B") == "Ascend 910B"
    assert slugify("AMD MI300X") == "mi300x"
    assert slugify("NVIDIA RTX 4090") == "rtx-4090"


@pytest.mark.parametrize("gpu, group", [
    (GPUSpec("NVIDIA RTX 4090", 24, 1008, vendor="NVIDIA"), "NVIDIA RTX 40 Series"),
    (GPUSpec("RTX 3090", 24, 936, vendor="NVIDIA"), "NVIDIA RTX 30 Series"),
    (GPUSpec("H100", 80, 3350, vendor="NVIDIA"), "NVIDIA Professional"),
    (GPUSpec("MI300X", 192, 5300, vendor="AMD"), "AMD Radeon"),
    (GPUSpec("Ascend 910B", 64, 1600, vendor="Huawei"), "Huawei"),
    (GPUSpec("Mystery", 16, 0), "Other Accelerators"),
])
def test_group_label(gpu, group):
    assert group_label(gpu) == group


def test_load_gpu_catalog(tmp_path):
    path = tmp_path / "GPUs.json"
    path.write_text(json.dumps({"gpus": [
        {"name": "NVIDIA A100", "vendor": "NVIDIA", "memory_gb": "40 / 80",
         "memory_bandwidth_tbps": "2.0 TB/s", "price_usd": 15000},
        {"name": "NVIDIA L4", "vram_gb": 24, "memory_bandwidth_gbs": 300},
        {"name": "No VRAM"},
        "garbage",
    ]}))

    gpus = load_gpu_catalog(path)
    assert [g.name for g in gpus] == ["NVIDIA A100", "NVIDIA L4"]
    assert gpus[0].vram_gb == 80
    assert gpus[0].bandwidth_gbs == 2048
    assert gpus[0].price_usd == 15000
    assert gpus[0].slug == "a100"
    assert gpus[1].cloud_price_per_hour_usd is None


def test_load_gpu_catalog_missing_or_malformed(tmp_path):
    assert load_gpu_catalog(tmp_path / "missing.json") == []

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    assert load_gpu_catalog(bad) == []

    wrong = tmp_path / "wrong.json"
    wrong.write_text(json.dumps({"accelerators": []}))
    assert load_gpu_catalog(wrong) == []


def test_load_llm_catalog(tmp_path):
    path = tmp_path / "LLMs.json"
    path.write_text(json.dumps([
        {"model_name": "Qwen3 235B-A22B", "parameter_count_billion": 235, "num_layers": 94,
         "hidden_size": 4096, "num_attention_heads": 64,
         "moe": {"enabled": True, "num_experts": 128, "active_experts": 8}},
        {"name": "Mistral 7B", "parameter_count_billions": 7.3, "num_layers": 32, "hidden_size": 4096},
        {"num_layers": 12},
    ]))

    models = load_llm_catalog(path)
    assert [m.name for m in models] == ["Qwen3 235B-A22B", "Mistral 7B"]
    assert models[0].active_params_billions == pytest.approx(14.6875)
    assert models[1].params_billions == 7.3
    assert models[1].active_params_billions is None
    assert models[1].num_heads is None


def test_merge_gpu_catalogs():
    extra = [
        GPUSpec("NVIDIA H100", 80, 3350, slug="h100"),
        GPUSpec("NVIDIA L40S", 48, 864, slug="l40s"),
        GPUSpec("NVIDIA L4", 24, 300, slug="l4"),
    ]
    merged = merge_gpu_catalogs(REFERENCE_GPUS, extra)
    assert [g.name for g in merged] == ["H200", "H100", "H20", "A100", "L40", "NVIDIA L40S", "NVIDIA L4"]
    assert merged[1] is REFERENCE_GPUS[1]


def test_shipped_catalogs_load():
    from config import GPU_CATALOG_PATH, LLM_CATALOG_PATH

    gpus = load_gpu_catalog(GPU_CATALOG_PATH)
    assert gpus
    assert all(g.vram_gb > 0 for g in gpus)
    assert load_llm_catalog(LLM_CATALOG_PATH)


def test_find_llm_record():
    records = [
        LLMRecord("Llama 3.1 8B Instruct", 8, 32, 4096, 32),
        LLMRecord("Llama 3.1 70B Instruct", 70, 80, 8192, 64),
    ]
    assert find_llm_record("Llama 3.1 70B", records).name == "Llama 3.1 70B Instruct"
    assert find_llm_record("llama-3.1-8b-instruct", records).name == "Llama 3.1 8B Instruct"
    assert find_llm_record("Mystery", records) is None
    assert find_llm_record("", records) is None
    assert find_llm_record("Llama 3.1 70B", []) is None


def test_parsing_rounds_half_up():
    assert parse_memory_gb("24.5") == 25
    assert parse_memory_gb(22.5) == 23
    assert parse_bandwidth_gbs({"memory_bandwidth_tbps": 2.5 / 1024}) == 3
