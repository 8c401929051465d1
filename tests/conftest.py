import pytest

from calc import WorkloadConfig, estimate_workload_memory


@pytest.fixture
def workload_7b():
    """7B model, fp16, 4K context, one request."""
    return WorkloadConfig(model="qwen-ds-7b", quantization="fp16", context_length=4096,
                          concurrency=1, batch_size=1)


@pytest.fixture
def memory_7b(workload_7b):
    return estimate_workload_memory(workload_7b)
