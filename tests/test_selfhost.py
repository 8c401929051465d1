import pytest

from catalog import GPUSpec, LLMRecord, load_llm_catalog
from config import LLM_CATALOG_PATH
from selfhost import (
    CAPACITY_SUGGESTIONS,
    CSV_HEADERS,
    DEFAULT_MODEL_MEMORY_GB,
    DEFAULT_PERFORMANCE_NOTES,
    SCENARIO_COLUMNS,
    SCENARIO_CONTEXTS,
    Architecture,
    build_scenario_table,
    compute_kv_cache_gb,
    estimate_selfhost_capacity,
    estimate_selfhost_performance,
    filter_scenarios,
    format_params,
    gpu_bandwidth,
    memory_label,
    model_memory_from_params,
    moe_note,
    parse_params_from_label,
    performance_notes,
    performance_rating,
    preset_memory_from_record,
    preset_model_memory,
    quantization_label,
    resolve_model_input,
    resolve_selfhost_architecture,
    scenarios_to_csv,
    selfhost_heuristic_architecture,
    sort_scenarios,
)

LLAMA = [
    LLMRecord("Llama 3.1 8B Instruct", 8, 32, 4096, 32),
    LLMRecord("Llama 3.1 70B Instruct", 70, 80, 8192, 64),
    LLMRecord("Qwen3 235B-A22B", 235, 94, 4096, 64, moe_num_experts=128, moe_active_experts=8),
]


@pytest.fixture
def scenarios():
    return build_scenario_table("Mistral 7B", "H100", 80, 1, 14, 1.0, Architecture(32, 4096), 3000,
                                params_display="7")


def test_kv_cache():
    arch = Architecture(32, 4096)
    assert compute_kv_cache_gb(4096, arch) == pytest.approx(2.0)
    assert compute_kv_cache_gb(4096, arch, overhead_fraction=0.1) == pytest.approx(2.2)
    assert compute_kv_cache_gb(8192, arch) == pytest.approx(4.0)
    assert compute_kv_cache_gb(4096, Architecture(0, 0)) == pytest.approx(2.0)


@pytest.mark.parametrize("params, expected", [
    (None, (32, 4096)),
    (3, (28, 3072)),
    (4, (28, 3072)),
    (8, (32, 4096)),
    (13, (40, 4096)),
    (32, (64, 5120)),
    (70, (80, 8192)),
    (120, (88, 12288)),
    (405, (60, 7168)),
])
def test_selfhost_heuristic(params, expected):
    assert selfhost_heuristic_architecture(params) == expected


def test_architecture_from_catalog():
    assert resolve_selfhost_architecture("Llama 3.1 70B", LLAMA) == (80, 8192)
    assert resolve_selfhost_architecture("qwen3 235b-a22b", LLAMA) == (94, 4096)


def test_architecture_fallbacks():
    assert resolve_selfhost_architecture("Foo 13B", LLAMA) == (40, 4096)
    assert resolve_selfhost_architecture("Mystery", LLAMA) == (32, 4096)
    assert resolve_selfhost_architecture("26.0B", None) == (64, 5120)


def test_parse_params_from_label():
    assert parse_params_from_label("Qwen3 235B-A22B") == (235, 22)
    assert parse_params_from_label("Kimi K2 1T-A32B") == (1000, 32)
    assert parse_params_from_label("Llama 3.1 70B Instruct") == (70, None)
    assert parse_params_from_label("gpt") == (None, None)


def test_capacity_fits():
    capacity = estimate_selfhost_capacity(1, 80, 14, 1.0, 4096, Architecture(32, 4096), 0, 2)
    assert capacity.total_vram_gb == 80
    assert capacity.kv_cache_per_request_gb == pytest.approx(2.0)
    assert capacity.available_memory_gb == pytest.approx(64)
    assert capacity.max_concurrent_requests == pytest.approx(32)
    assert capacity.meets_minimum
    assert capacity.suggestions == []


def test_capacity_model_too_large():
    capacity = estimate_selfhost_capacity(1, 24, 140, 0.5, 4096, Architecture(80, 8192))
    assert capacity.model_memory_gb == 70
    assert capacity.model_exceeds_vram
    assert capacity.max_concurrent_requests == 0
    assert not capacity.meets_minimum
    assert capacity.suggestions == CAPACITY_SUGGESTIONS


def test_preset_memory():
    assert preset_memory_from_record(LLAMA[1]) == (140, None)
    total, active = preset_memory_from_record(LLAMA[2])
    assert total == 470
    assert active == pytest.approx(235 * 8 / 128 * 2)
    assert preset_model_memory(total, active, offloading=True) == pytest.approx(active)
    assert preset_model_memory(total, active, offloading=False) == 470
    assert preset_model_memory(None) == 14


def test_performance_single_gpu():
    perf = estimate_selfhost_performance(14, 1.0, 4096, 3000)
    assert perf.tokens_per_second == pytest.approx(3000 / 14 * 0.85 * 0.6)
    assert perf.multi_gpu_scaling == 1.0
    assert perf.generation_time_100_tokens == pytest.approx(100 / perf.tokens_per_second)


def test_performance_factors():
    perf = estimate_selfhost_performance(14, 1.0, 4096, 3000, gpu_count=2)
    assert perf.multi_gpu_scaling == pytest.approx(0.925)
    assert perf.tokens_per_second == pytest.approx(202.18, abs=0.01)

    perf = estimate_selfhost_performance(7, 0.5, 32768, 3000, model_params_b=70)
    assert (perf.efficiency, perf.quant_boost, perf.context_impact) == (0.5, 1.8, 0.6)
    assert perf.tokens_per_second == pytest.approx(138.857, abs=0.001)

    perf = estimate_selfhost_performance(10, 0.25, 131072, 1000, model_params_b=200)
    assert (perf.efficiency, perf.quant_boost, perf.context_impact) == (0.3, 2.5, 0.3)


def test_performance_without_bandwidth():
    assert estimate_selfhost_performance(14, 1.0, 4096, 0) is None
    assert estimate_selfhost_performance(0, 1.0, 4096, 3000) is None


def test_gpu_bandwidth():
    gpus = [GPUSpec("H100", 80, 3350, slug="h100"), GPUSpec("Mystery", 16, 0, slug="mystery")]
    assert gpu_bandwidth("h100", gpus) == 3350
    assert gpu_bandwidth("h100") == 3000
    assert gpu_bandwidth("mystery", gpus) == 0
    assert gpu_bandwidth(None, gpus) == 0


@pytest.mark.parametrize("tps, label", [
    (150, "Excellent"),
    (100, "Good"),
    (51, "Good"),
    (30, "Moderate"),
    (11, "Slow"),
    (10, "Very Slow"),
])
def test_performance_rating(tps, label):
    assert performance_rating(tps)[0] == label


def test_performance_notes():
    assert performance_notes(20, 65536, 1) == [
        "Consider stronger quantization (INT4) for better speed",
        "Reduce context length for faster generation",
        "Consider adding more GPUs for better performance",
    ]
    assert performance_notes(40, 4096, 2) == DEFAULT_PERFORMANCE_NOTES
    assert performance_notes(80, 4096, 1) == ["Performance should be smooth for most use cases"]

    note = moe_note(True, 0.5, active_gb=29.4)
    assert performance_notes(80, 4096, 1, note)[0] == "MoE offloading ON: VRAM and performance use active experts (~14.7 GB)"


def test_labels():
    assert quantization_label(0.25) == "INT4/MXFP4"
    assert format_params(235, 22) == "235 / 22"
    assert format_params(7.3) == "7.3"
    assert format_params(70, 70) == "70"


def test_scenario_table(scenarios):
    assert list(scenarios.columns) == SCENARIO_COLUMNS
    assert len(scenarios) == 30
    assert set(scenarios["context"]) == set(SCENARIO_CONTEXTS)
    assert (scenarios["context"] >= 8192).all()
    assert (scenarios["max_concurrent"] >= 1).all()
    assert set(scenarios["quant"]) == {"FP16/BF16"}

    first = scenarios.iloc[0]
    assert (first["gpu_count"], first["context"]) == (1, 8192)
    assert first["max_concurrent"] == pytest.approx(16)
    assert first["tokens_per_sec"] == pytest.approx(92.89, abs=0.01)


def test_scenario_table_extends_gpu_counts():
    table = build_scenario_table("Mistral 7B", "Tiny", 4, 1, 14, 1.0, Architecture(32, 4096), 3000)
    assert len(table) == 10
    assert table["gpu_count"].max() == 9


def test_scenario_table_without_vram():
    table = build_scenario_table("Mistral 7B", "None", 0, 1, 14, 1.0, Architecture(32, 4096), 3000)
    assert table.empty
    assert list(table.columns) == SCENARIO_COLUMNS


def test_filter_and_sort(scenarios):
    only_8k = filter_scenarios(scenarios, context=8192)
    assert len(only_8k) == 6
    assert set(only_8k["context"]) == {8192}

    fast = filter_scenarios(scenarios, min_tps=100)
    assert (fast["tokens_per_sec"] >= 100).all()

    ordered = sort_scenarios(scenarios, "tokens_per_sec", ascending=False)
    assert ordered["tokens_per_sec"].is_monotonic_decreasing
    assert sort_scenarios(scenarios, "nope") is scenarios


def test_csv_export(scenarios):
    lines = scenarios_to_csv(scenarios).split("\n")
    assert lines[0] == ",".join(CSV_HEADERS)
    assert lines[1] == "Mistral 7B,7,H100,1,FP16/BF16,8k,16.00,92.89,1.1"
    assert len(lines) == len(scenarios) + 1


def test_csv_quotes_commas():
    table = build_scenario_table("Foo, Bar", "H100", 80, 1, 14, 1.0, Architecture(32, 4096), 3000)
    assert scenarios_to_csv(table).split("\n")[1].startswith('"Foo, Bar",')


def test_memory_label_matches_small_models_in_shipped_catalog():
    llms = load_llm_catalog(LLM_CATALOG_PATH)
    assert memory_label(DEFAULT_MODEL_MEMORY_GB) == "7B"
    assert resolve_selfhost_architecture(memory_label(DEFAULT_MODEL_MEMORY_GB), llms) == (32, 4096)
    assert resolve_selfhost_architecture(memory_label(model_memory_from_params(7.0)), llms) == (32, 4096)
    assert resolve_selfhost_architecture(memory_label(model_memory_from_params(13)), llms) == (40, 4096)


def test_model_input_modes():
    by_params = resolve_model_input("parameters", params_b=70)
    assert by_params == (140, "70B", 70)

    by_memory = resolve_model_input("memory", memory_gb=140)
    assert by_memory == (140, "70B", 7)

    assert resolve_model_input("memory") == (14, "7B", 7)


def test_memory_mode_uses_small_model_efficiency():
    model_input = resolve_model_input("memory", memory_gb=140)
    perf = estimate_selfhost_performance(model_input.memory_gb, 1.0, 4096, 3000,
                                         model_params_b=model_input.params_b)
    assert perf.efficiency == 0.85


@pytest.mark.parametrize("gpu_count, context", [(1, 0), (0, 4096)])
def test_capacity_rejects_invalid_inputs(gpu_count, context):
    with pytest.raises(ValueError):
        estimate_selfhost_capacity(gpu_count, 80, 14, 1.0, context, Architecture(32, 4096))
