import os

from dotenv import load_dotenv

from trajconserve.logging import configure_logging
from trajconserve.utils import str_to_bool

__all__ = [
    "METRIC_NAMES",
    "TRAJCONSERVE_HOST_DEVICE_COUNT",
    "TRAJCONSERVE_TESTING_FLAG",
]

logger = configure_logging("trajconserve.constants")

load_dotenv()

# Columns of the per-gene array weights table that are persisted to the
# metric store, in the order they are recorded in `metadata/metric_names`.
METRIC_NAMES = (
    "Estimate",
    "Est.Error",
    "Q2.5",
    "Q97.5",
    "shape",
    "weight",
    "weight_norm",
)

# Reduce the number of MCMC iterations used by the command line interface
# when True. Defaults to False if not set.
TRAJCONSERVE_TESTING_FLAG = str_to_bool(
    os.getenv("TRAJCONSERVE_TESTING_FLAG", "False")
)

# Number of host devices exposed to JAX so that MCMC chains can run in
# parallel on CPU. Only honored when set before JAX is initialized.
# Defaults to 1 if not set.
TRAJCONSERVE_HOST_DEVICE_COUNT = int(
    os.getenv("TRAJCONSERVE_HOST_DEVICE_COUNT", "1")
)

if TRAJCONSERVE_TESTING_FLAG:
    logger.info("TRAJCONSERVE_TESTING_FLAG is set, using reduced sampling")
