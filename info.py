def get_reference_information():
    """Return reference information as a markdown string."""
    return """
### How Memory Is Estimated:
- **Weights**: parameters x bytes per parameter (FP32 4, FP16/BF16 2, FP8/INT8 1)
- **KV Cache**: 2 (K and V) x layers x hidden size x context length x concurrent requests x bytes per value
- **Activations**: batch size x context length x hidden size x bytes per value, +20% for models with 80+ layers or hidden size 8192+
- **Overhead**: a percentage of the above (30% by default) plus an optional fixed amount
- All sizes use 1024^3 bytes per GB

### How Throughput Is Estimated:
- Generation is memory-bandwidth bound: tokens/sec = bandwidth / (total memory x efficiency)
- Efficiency: 0.85 for INT8/FP8, 0.9 for INT4, 0.7 otherwise
- Per-request speed divides the total by the number of concurrent requests

### How GPUs Are Recommended:
- Each GPU is planned at 80% of its VRAM, with a 30% safety margin on weights and per-request memory
- **Shards per replica**: GPUs needed to hold the weights (tensor parallel)
- **Requests per replica**: how many requests fit in the memory left after the weights
- **Servers / Racks**: 8 GPUs per server, 8 servers per rack
- Compatible GPUs hold the weights on a single device and serve at least one request

### References:
- These calculations are approximations and actual requirements may vary
- KV cache calculations assume standard multi-head attention
- Actual performance depends on the serving stack, kernels and batching strategy
"""
