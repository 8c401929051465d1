import os
import logging
from pathlib import Path

from dotenv import load_dotenv

from recommend import InfraDefaults

logger = logging.getLogger(__name__)

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

GPU_CATALOG_PATH = os.getenv("GPU_CATALOG_PATH", str(BASE_DIR / "data" / "GPUs.json"))
LLM_CATALOG_PATH = os.getenv("LLM_CATALOG_PATH", str(BASE_DIR / "data" / "LLMs.json"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

SYSTEM_OVERHEAD_PERCENT = float(os.getenv("SYSTEM_OVERHEAD_PERCENT", "30"))
SYSTEM_OVERHEAD_FIXED_GB = float(os.getenv("SYSTEM_OVERHEAD_FIXED_GB", "0"))


def infra_from_env(environ=None):
    """Build InfraDefaults from environment variables, falling back to the defaults."""
    environ = os.environ if environ is None else environ
    defaults = InfraDefaults()

    def read(name, cast, default):
        raw = environ.get(name)
        if raw in (None, ""):
            return default
        try:
            return cast(raw)
        except ValueError:
            logger.warning("Ignoring invalid %s=%r", name, raw)
            return default

    return InfraDefaults(
        gpus_per_server=read("GPUS_PER_SERVER", int, defaults.gpus_per_server),
        servers_per_rack=read("SERVERS_PER_RACK", int, defaults.servers_per_rack),
        mem_utilization_max=read("MEM_UTILIZATION_MAX", float, defaults.mem_utilization_max),
        overhead_factor=read("SAFETY_OVERHEAD_FACTOR", float, defaults.overhead_factor),
        top_n=read("TOP_N_RECOMMENDATIONS", int, defaults.top_n),
    )


INFRA = infra_from_env()
