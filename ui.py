import streamlit as st
import pandas as pd
import plotly.express as px

from calc import MAX_CONCURRENCY, Quantization, WorkloadConfig
from catalog import group_label
from selfhost import QUANTIZATION_LABELS, SCENARIO_CONTEXTS, quantization_label

MEMORY_COLORS = {
    "Model Weights": "#00d4ff",
    "KV Cache": "#ffb347",
    "Activation": "#7fb069",
    "Overhead": "#94a3b8",
}

RECOMMENDATION_COLUMNS = [
    "GPU", "VRAM (GB)", "Bandwidth (GB/s)", "Utilization (%)", "Compatible", "Total GPUs",
    "Shards/Replica", "Requests/Replica", "Servers", "Racks", "Price ($)", "Cloud $/hr",
]


def memory_breakdown_frame(memory):
    """Memory components as a two-column table."""
    return pd.DataFrame({
        "Component": list(MEMORY_COLORS),
        "Size (GB)": [memory.weights_gb, memory.cache_gb, memory.activation_gb, memory.overhead_gb],
    })


def memory_pie_figure(memory):
    fig = px.pie(
        memory_breakdown_frame(memory),
        values="Size (GB)",
        names="Component",
        color="Component",
        color_discrete_map=MEMORY_COLORS,
        title=f"Memory Breakdown: {memory.total_gb:.1f} GB Total",
        hole=0.4,
    )
    return fig


def recommendations_frame(recommendations):
    """One row per recommended GPU, in ranking order."""
    rows = []
    for rec in recommendations:
        gpu = rec.gpu
        rows.append({
            "GPU": gpu.name,
            "VRAM (GB)": gpu.vram_gb,
            "Bandwidth (GB/s)": gpu.bandwidth_gbs,
            "Utilization (%)": rec.utilization_percent,
            "Compatible": "Yes" if rec.compatible else "No",
            "Total GPUs": rec.total_gpus_needed,
            "Shards/Replica": rec.shards_per_replica,
            "Requests/Replica": rec.requests_per_replica,
            "Servers": rec.servers_needed,
            "Racks": rec.racks_needed,
            "Price ($)": f"${gpu.price_usd:,.0f}" if gpu.price_usd else "-",
            "Cloud $/hr": f"${gpu.cloud_price_per_hour_usd:.2f}" if gpu.cloud_price_per_hour_usd else "-",
        })
    return pd.DataFrame(rows, columns=RECOMMENDATION_COLUMNS)


def scenario_figure(scenarios):
    data = scenarios.assign(Context=scenarios["context"].astype(str))
    fig = px.line(
        data,
        x="gpu_count",
        y="tokens_per_sec",
        color="Context",
        markers=True,
        title="Tokens per Second by GPU Count",
        labels={"gpu_count": "Number of GPUs", "tokens_per_sec": "Tokens per Second"},
    )
    return fig


def create_sidebar_inputs(model_names, gpus=(), sys_overhead_percent=30.0, sys_overhead_fixed_gb=0.0):
    """Sidebar for the serving calculator; returns a WorkloadConfig."""
    st.sidebar.header("Model Configuration")

    model = st.sidebar.selectbox("Model", options=list(model_names) + ["custom"], index=0)
    custom_params = None
    if model == "custom":
        custom_params = st.sidebar.number_input(
            "Parameters (Billions)", min_value=0.1, max_value=10000.0, value=7.0, step=1.0
        )

    quantization = st.sidebar.radio(
        "Quantization",
        options=[q.value for q in Quantization if q != Quantization.INT4],
        index=1,
        format_func=str.upper,
    )

    context_length = st.sidebar.slider(
        "Context Length (tokens)",
        min_value=512,
        max_value=131072,
        value=4096,
        step=512,
        help="Tokens kept in the KV cache for every request",
    )

    concurrency = st.sidebar.number_input(
        "Concurrent Requests", min_value=1, max_value=MAX_CONCURRENCY, value=1, step=1
    )
    batch_size = st.sidebar.slider("Batch Size", min_value=1, max_value=128, value=1, step=1)

    st.sidebar.markdown("---")
    st.sidebar.subheader("Overheads")
    kv_overhead = st.sidebar.slider("KV Cache Overhead (%)", min_value=0, max_value=100, value=0, step=5)
    sys_overhead_pct = st.sidebar.slider(
        "System Overhead (%)", min_value=0, max_value=100, value=int(sys_overhead_percent), step=5
    )
    sys_overhead_gb = st.sidebar.number_input(
        "System Overhead (GB)", min_value=0.0, value=float(sys_overhead_fixed_gb), step=0.5
    )

    st.sidebar.markdown("---")
    st.sidebar.subheader("Deployment")
    gpu_name = st.sidebar.selectbox("GPU Model", options=[None] + [gpu.name for gpu in gpus],
                                    format_func=lambda name: name or "Compare all")
    gpu_count = st.sidebar.number_input("GPUs Available", min_value=1, max_value=4096, value=1, step=1)
    vram_override = None
    if st.sidebar.checkbox("Override VRAM", value=False):
        vram_override = st.sidebar.number_input("VRAM per GPU (GB)", min_value=1.0, value=80.0, step=1.0)

    return WorkloadConfig(
        model=model,
        quantization=quantization,
        context_length=int(context_length),
        concurrency=int(concurrency),
        batch_size=int(batch_size),
        custom_params_billions=custom_params,
        kv_overhead_percent=float(kv_overhead),
        system_overhead_percent=float(sys_overhead_pct),
        system_overhead_fixed_gb=float(sys_overhead_gb),
        gpu_name=gpu_name,
        gpu_count=int(gpu_count),
        vram_override_gb=vram_override,
    )


def display_memory_breakdown(memory):
    col1, col2 = st.columns(2)
    with col1:
        st.markdown("#### Memory Requirements")
        table = memory_breakdown_frame(memory)
        table.loc[len(table)] = ["Total", memory.total_gb]
        table["Size (GB)"] = table["Size (GB)"].map(lambda v: f"{v:.1f} GB")
        st.dataframe(table, use_container_width=True, hide_index=True)
    with col2:
        st.plotly_chart(memory_pie_figure(memory), use_container_width=True)


def display_performance(performance, model):
    values = performance.rounded()
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Parameters", f"{model.params / 1e9:,.1f}B")
    col2.metric("Inference Speed", f"{values['inference_speed']} tok/s")
    col3.metric("Bandwidth Utilization", f"{values['bandwidth_utilization']}%")
    col4.metric("Per-Request Speed", f"{values['effective_speed']} tok/s")


def display_recommendations(recommendations):
    st.subheader("GPU Recommendations")
    df = recommendations_frame(recommendations)
    if df.empty:
        st.warning("No GPUs available in the catalog.")
        return
    st.dataframe(df, use_container_width=True, hide_index=True)

    best = recommendations[0]
    if best.compatible:
        st.success(
            f"**Recommended:** {best.total_gpus_needed} x {best.name} "
            f"({best.shards_per_replica} per replica, {best.servers_needed} server(s), {best.racks_needed} rack(s))"
        )
    else:
        st.warning("No single GPU can hold the model weights with the safety margin; sharding is required.")


def display_tips(tips):
    st.subheader("Optimization Tips")
    show = {"warning": st.warning, "info": st.info, "success": st.success}
    for tip in tips:
        show.get(tip["type"], st.info)(f"**{tip['title']}**: {tip['message']}")


def create_selfhost_inputs(gpus, presets):
    """Sidebar for the self-host calculator; returns a plain dict of inputs."""
    st.sidebar.header("GPU Configuration")
    by_label = {f"{gpu.name} ({gpu.vram_gb:.0f}GB VRAM) - {group_label(gpu)}": gpu for gpu in gpus}
    gpu_label = st.sidebar.selectbox("GPU", options=list(by_label))
    gpu = by_label[gpu_label]
    gpu_count = st.sidebar.number_input("Number of GPUs", min_value=1, max_value=512, value=1, step=1)
    vram_per_gpu = st.sidebar.number_input("VRAM per GPU (GB)", min_value=1.0, value=float(gpu.vram_gb), step=1.0)
    system_overhead = st.sidebar.number_input("System Overhead (GB)", min_value=0.0, value=2.0, step=0.5)

    st.sidebar.markdown("---")
    st.sidebar.header("Model Configuration")
    input_type = st.sidebar.radio("Model Input", options=["preset", "parameters", "memory"],
                                  format_func=str.capitalize)
    inputs = {
        "gpu": gpu,
        "gpu_count": int(gpu_count),
        "vram_per_gpu": float(vram_per_gpu),
        "system_overhead_gb": float(system_overhead),
        "model_input_type": input_type,
        "preset": None,
        "moe_offloading": False,
        "model_params_b": None,
        "model_memory_gb": None,
    }
    if input_type == "preset":
        inputs["preset"] = st.sidebar.selectbox("Model", options=presets, format_func=lambda r: r.name)
        if inputs["preset"] is not None and inputs["preset"].active_params_billions:
            inputs["moe_offloading"] = st.sidebar.checkbox("MoE expert offloading", value=False)
    elif input_type == "parameters":
        inputs["model_params_b"] = st.sidebar.number_input("Parameters (Billions)", min_value=0.1, value=7.0)
    else:
        inputs["model_memory_gb"] = st.sidebar.number_input("Model Memory (GB, FP16)", min_value=0.1, value=14.0)

    inputs["quantization"] = st.sidebar.selectbox(
        "Quantization", options=list(QUANTIZATION_LABELS), format_func=quantization_label
    )
    inputs["context_length"] = int(st.sidebar.selectbox(
        "Context Length", options=[4096] + SCENARIO_CONTEXTS, index=0
    ))
    inputs["kv_overhead_fraction"] = st.sidebar.slider("KV Cache Overhead (%)", 0, 100, 10, 5) / 100
    return inputs


def display_selfhost_results(capacity, performance, rating, notes):
    col1, col2, col3 = st.columns(3)
    col1.metric("Total VRAM", f"{capacity.total_vram_gb:.1f} GB")
    col2.metric("Model Memory", f"{capacity.model_memory_gb:.1f} GB")
    col3.metric("KV Cache / Request", f"{capacity.kv_cache_per_request_gb:.2f} GB")
    col1.metric("Available Memory", f"{max(0.0, capacity.available_memory_gb):.1f} GB")
    col2.metric("Max Concurrent Requests", f"{capacity.max_concurrent_requests:.2f}")
    col3.metric("Effective Context", f"{capacity.context_length:,} tokens")

    if not capacity.meets_minimum:
        st.error("Current GPU does not meet the minimum requirements to serve this model\n\n"
                 + "\n".join(f"- {s}" for s in capacity.suggestions))

    if performance is not None and not capacity.model_exceeds_vram:
        st.subheader("Performance Estimate")
        col1, col2, col3 = st.columns(3)
        col1.metric("Tokens per Second", f"{performance.tokens_per_second:.2f}")
        col2.metric("Time for 100 Tokens", f"{performance.generation_time_100_tokens:.1f} s")
        col3.metric("Rating", rating[0])
        st.markdown("#### Performance Tips\n" + "\n".join(f"- {n}" for n in notes))


def display_scenarios(scenarios, csv):
    st.subheader("Performance Scenarios")
    if scenarios.empty:
        st.info("No runnable scenarios for this configuration.")
        return
    st.dataframe(scenarios, use_container_width=True, hide_index=True)
    st.plotly_chart(scenario_figure(scenarios), use_container_width=True)
    st.download_button("Download CSV", data=csv, file_name="performance_scenarios.csv", mime="text/csv")


def display_deployment_check(check):
    if check is None:
        return
    rec = check.recommendation
    st.subheader(f"Your Deployment: {check.gpu_count} x {rec.name}")
    col1, col2, col3 = st.columns(3)
    col1.metric("GPUs Needed", rec.total_gpus_needed)
    col2.metric("Shards/Replica", rec.shards_per_replica)
    col3.metric("Requests/Replica", rec.requests_per_replica)
    if check.sufficient:
        st.success(f"{check.gpu_count} x {rec.name} ({rec.vram_gb:.0f} GB) can serve this workload.")
    elif not rec.compatible:
        st.warning(f"The weights do not fit a single {rec.name} with the safety margin; "
                   f"{rec.total_gpus_needed} GPUs are needed with sharding.")
    else:
        st.warning(f"{check.shortfall} more {rec.name} GPU(s) needed to serve the requested concurrency.")
