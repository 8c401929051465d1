import logging

import streamlit as st

# Import our custom modules
import calc
import catalog
import config
import info
import recommend
import selfhost
import ui

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

# Set page config
st.set_page_config(page_title="LLM Serving GPU Calculator", layout="wide")


@st.cache_data
def load_gpus(path):
    return catalog.merge_gpu_catalogs(catalog.REFERENCE_GPUS, catalog.load_gpu_catalog(path))


@st.cache_data
def load_llms(path):
    return catalog.load_llm_catalog(path)


def serving_calculator(gpus):
    st.title("LLM Serving GPU Calculator")
    st.markdown("""
    Estimate the memory and throughput needed to serve a model at a given context length and
    concurrency, and how many GPUs, servers and racks each accelerator would take.
    """)

    workload = ui.create_sidebar_inputs(
        catalog.MODELS, gpus, config.SYSTEM_OVERHEAD_PERCENT, config.SYSTEM_OVERHEAD_FIXED_GB
    )
    model = workload.resolve_model()

    memory = calc.estimate_workload_memory(workload)
    # Reference GPU is the first (fastest) entry
    performance = calc.estimate_performance(memory, workload.quantization, workload.concurrency, gpus[0])
    recommendations = recommend.recommend_gpus(memory, workload, gpus, config.INFRA)
    deployment = recommend.check_deployment(memory, workload, gpus, config.INFRA)
    logger.debug("Workload %s -> %.2f GB total", workload, memory.total_gb)

    ui.display_performance(performance, model)
    ui.display_memory_breakdown(memory)
    ui.display_recommendations(recommendations)
    ui.display_deployment_check(deployment)
    ui.display_tips(calc.get_optimization_tips(memory, performance, workload))

    st.markdown("---")
    st.markdown(info.get_reference_information())


def selfhost_calculator(gpus, llms):
    st.title("Self-Host LLM Calculator")
    inputs = ui.create_selfhost_inputs(gpus, llms)

    # Resolve the model memory and a label for architecture lookup
    active_b = None
    moe_line = None
    if inputs["model_input_type"] == "preset" and inputs["preset"] is not None:
        record = inputs["preset"]
        label = record.name
        total_gb, active_gb = selfhost.preset_memory_from_record(record)
        model_memory = selfhost.preset_model_memory(total_gb, active_gb, inputs["moe_offloading"])
        full_b = record.params_billions
        active_b = record.active_params_billions
        if active_gb:
            moe_line = selfhost.moe_note(inputs["moe_offloading"], inputs["quantization"], active_gb, total_gb)
    else:
        model_input = selfhost.resolve_model_input(
            inputs["model_input_type"], inputs["model_params_b"], inputs["model_memory_gb"]
        )
        model_memory, label, full_b = model_input

    arch = selfhost.resolve_selfhost_architecture(label, llms)
    capacity = selfhost.estimate_selfhost_capacity(
        inputs["gpu_count"], inputs["vram_per_gpu"], model_memory, inputs["quantization"],
        inputs["context_length"], arch, inputs["kv_overhead_fraction"], inputs["system_overhead_gb"],
    )

    bandwidth = selfhost.gpu_bandwidth(inputs["gpu"].slug or inputs["gpu"].name, gpus)
    performance = selfhost.estimate_selfhost_performance(
        capacity.model_memory_gb, inputs["quantization"], inputs["context_length"],
        bandwidth, inputs["gpu_count"], full_b or 7,
    )
    rating, notes = None, []
    if performance is not None:
        tps = round(performance.tokens_per_second, 2)
        rating = selfhost.performance_rating(tps)
        notes = selfhost.performance_notes(tps, inputs["context_length"], inputs["gpu_count"], moe_line)

    ui.display_selfhost_results(capacity, performance, rating, notes)

    if inputs["model_input_type"] == "preset" and inputs["preset"] is not None:
        scenarios = selfhost.build_scenario_table(
            label, inputs["gpu"].name, inputs["vram_per_gpu"], inputs["gpu_count"], capacity.model_memory_gb,
            inputs["quantization"], arch, bandwidth, inputs["kv_overhead_fraction"],
            inputs["system_overhead_gb"], full_b or 7, selfhost.format_params(full_b, active_b),
        )
        ui.display_scenarios(scenarios, selfhost.scenarios_to_csv(scenarios))


gpus = load_gpus(config.GPU_CATALOG_PATH)
llms = load_llms(config.LLM_CATALOG_PATH)

page = st.sidebar.radio("Calculator", options=["Serving", "Self-Host"], index=0)
if page == "Serving":
    serving_calculator(gpus)
else:
    selfhost_calculator(gpus, llms)
