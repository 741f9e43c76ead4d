from loguru import logger

from .config import (
    EPS,
    MAX_COHORT_WIDTH,
    AccessHint,
    LaunchConfig,
    ReduceMode,
    Strategy,
    native_cohort_width,
)
from .dispatch import (
    CohortReducer,
    HardwareCohortReducer,
    LayerNormBuffers,
    RowPerWorkerReducer,
    RowStatsReducer,
    get_reducer,
    layernorm_forward,
    run,
)
from .errors import LayerNormConfigError, LayerNormError, LayerNormLaunchError
from .module import TritonLayerNorm
from .reference import layernorm_reference

logger.disable("cohort_layernorm")

__all__ = [
    "EPS",
    "MAX_COHORT_WIDTH",
    "AccessHint",
    "LaunchConfig",
    "ReduceMode",
    "Strategy",
    "native_cohort_width",
    "CohortReducer",
    "HardwareCohortReducer",
    "LayerNormBuffers",
    "RowPerWorkerReducer",
    "RowStatsReducer",
    "get_reducer",
    "layernorm_forward",
    "run",
    "LayerNormConfigError",
    "LayerNormError",
    "LayerNormLaunchError",
    "TritonLayerNorm",
    "layernorm_reference",
]
