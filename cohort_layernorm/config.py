from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union

import torch
import triton

from .errors import LayerNormConfigError

EPS = 1e-5

# threads per block on every platform we launch on
MAX_COHORT_WIDTH = 1024

# elements per normalizer program
NORMALIZE_BLOCK_SIZE = 1024

WARP_SIZE = 32


class Strategy(enum.IntEnum):
    ROW_PER_WORKER = 1
    COHORT = 2
    HARDWARE_COHORT = 3


class ReduceMode(enum.IntEnum):
    """How a hardware-width cohort combines its lanes."""

    SHUFFLE = 0  # in-register warp reduction
    SCRATCH = 1  # halving tree over the cohort partials


class AccessHint(enum.Enum):
    DEFAULT = "default"
    STREAMING = "streaming"

    @property
    def row_load_policy(self) -> str:
        return "evict_first" if self is AccessHint.STREAMING else ""

    @property
    def broadcast_load_policy(self) -> str:
        return "evict_last" if self is AccessHint.STREAMING else ""

    @property
    def store_modifier(self) -> str:
        return ".cs" if self is AccessHint.STREAMING else ""


@dataclass(frozen=True)
class LaunchConfig:
    strategy: Strategy
    cohort_width: int
    # lanes per program; rows per program for row-per-worker
    block: int
    log2_block: int
    num_warps: int
    reduce_mode: ReduceMode = ReduceMode.SHUFFLE
    access_hint: AccessHint = AccessHint.DEFAULT


StrategyLike = Union[Strategy, int, str]


def parse_strategy(strategy_id: StrategyLike) -> Strategy:
    if isinstance(strategy_id, Strategy):
        return strategy_id
    if isinstance(strategy_id, str):
        try:
            return Strategy[strategy_id.strip().upper()]
        except KeyError:
            pass
        if not strategy_id.strip().isdigit():
            raise LayerNormConfigError(
                f"unknown strategy id {strategy_id!r}; expected one of "
                f"{[s.name.lower() for s in Strategy]} or {[int(s) for s in Strategy]}"
            )
        strategy_id = int(strategy_id)
    if isinstance(strategy_id, bool) or not isinstance(strategy_id, int):
        raise LayerNormConfigError(f"unknown strategy id {strategy_id!r}")
    try:
        return Strategy(strategy_id)
    except ValueError:
        raise LayerNormConfigError(
            f"unknown strategy id {strategy_id}; expected one of {[int(s) for s in Strategy]}"
        ) from None


def is_power_of_2(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def warps_for(lanes: int) -> int:
    return max(1, min(MAX_COHORT_WIDTH // WARP_SIZE, lanes // WARP_SIZE))


def native_cohort_width(device: Union[torch.device, str, None] = None) -> int:
    """Width of the platform's synchronous execution group (a warp or wavefront)."""
    device = torch.device(device) if device is not None else None
    if device is None or device.type != "cuda":
        # CPU tensors run through the Triton interpreter, which models a 32-lane warp
        return WARP_SIZE
    props = torch.cuda.get_device_properties(device)
    width = getattr(props, "warp_size", None)
    if width:
        return int(width)
    return 64 if torch.version.hip else WARP_SIZE


def supports_streaming_hints(device: Union[torch.device, str]) -> bool:
    device = torch.device(device)
    if device.type == "cuda":
        return torch.version.hip is None
    return True


def check_cohort_width(cohort_width: int) -> int:
    if isinstance(cohort_width, bool) or not isinstance(cohort_width, int):
        raise LayerNormConfigError(f"cohort width must be an int, got {type(cohort_width).__name__}")
    if cohort_width < 1:
        raise LayerNormConfigError(f"cohort width must be positive, got {cohort_width}")
    if cohort_width > MAX_COHORT_WIDTH:
        raise LayerNormConfigError(
            f"cohort width {cohort_width} exceeds the per-program limit of {MAX_COHORT_WIDTH}"
        )
    return cohort_width


def parse_reduce_mode(reduce_mode) -> ReduceMode:
    if isinstance(reduce_mode, bool) or not isinstance(reduce_mode, int):
        raise LayerNormConfigError(f"unknown reduce mode {reduce_mode!r}")
    try:
        return ReduceMode(reduce_mode)
    except ValueError:
        raise LayerNormConfigError(
            f"unknown reduce mode {reduce_mode!r}; expected one of {[int(m) for m in ReduceMode]}"
        ) from None


def log2(n: int) -> int:
    return triton.next_power_of_2(n).bit_length() - 1
