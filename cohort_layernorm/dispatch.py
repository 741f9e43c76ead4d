from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import torch
import triton
from loguru import logger
from triton.runtime.errors import OutOfResources

from .config import (
    EPS,
    NORMALIZE_BLOCK_SIZE,
    AccessHint,
    LaunchConfig,
    ReduceMode,
    Strategy,
    StrategyLike,
    check_cohort_width,
    is_power_of_2,
    log2,
    native_cohort_width,
    parse_reduce_mode,
    parse_strategy,
    supports_streaming_hints,
    warps_for,
)
from .errors import LayerNormConfigError, LayerNormLaunchError
from .kernels import (
    cohort_stats_kernel,
    hardware_cohort_stats_kernel,
    normalize_kernel,
    row_per_worker_stats_kernel,
)


@dataclass
class LayerNormBuffers:
    """Caller-owned tensors for one forward call. ``out``, ``mean`` and ``rstd`` are written in place."""

    out: torch.Tensor
    mean: torch.Tensor
    rstd: torch.Tensor
    inp: torch.Tensor
    weight: torch.Tensor
    bias: torch.Tensor


class RowStatsReducer:
    """
    Computes per-row mean and rstd of an N x C row-major matrix.

    Subclasses differ only in how workers are mapped onto a row; the
    dispatcher and the tests only talk to this interface.
    """

    strategy: Strategy

    def configure(self, cohort_width: int, device: torch.device,
                  reduce_mode: ReduceMode = ReduceMode.SHUFFLE) -> LaunchConfig:
        raise NotImplementedError

    def grid(self, N: int, config: LaunchConfig) -> Tuple[int]:
        return (N,)

    def launch(self, inp: torch.Tensor, mean: torch.Tensor, rstd: torch.Tensor,
               N: int, C: int, eps: float, config: LaunchConfig) -> None:
        raise NotImplementedError


class RowPerWorkerReducer(RowStatsReducer):
    strategy = Strategy.ROW_PER_WORKER

    def configure(self, cohort_width, device, reduce_mode=ReduceMode.SHUFFLE):
        # cohort_width is the number of rows (independent workers) per program
        check_cohort_width(cohort_width)
        rows = triton.next_power_of_2(cohort_width)
        return LaunchConfig(
            strategy=self.strategy,
            cohort_width=cohort_width,
            block=rows,
            log2_block=log2(rows),
            num_warps=warps_for(rows),
        )

    def grid(self, N, config):
        return (triton.cdiv(N, config.block),)

    def launch(self, inp, mean, rstd, N, C, eps, config):
        row_per_worker_stats_kernel[self.grid(N, config)](
            inp, mean, rstd, N, C, eps,
            ROWS=config.block,
            num_warps=config.num_warps,
        )


class CohortReducer(RowStatsReducer):
    strategy = Strategy.COHORT

    def configure(self, cohort_width, device, reduce_mode=ReduceMode.SHUFFLE):
        check_cohort_width(cohort_width)
        if not is_power_of_2(cohort_width):
            raise LayerNormConfigError(
                f"cohort strategy needs a power-of-two cohort width for its halving tree, got {cohort_width}"
            )
        return LaunchConfig(
            strategy=self.strategy,
            cohort_width=cohort_width,
            block=cohort_width,
            log2_block=log2(cohort_width),
            num_warps=warps_for(cohort_width),
            reduce_mode=ReduceMode.SCRATCH,
        )

    def launch(self, inp, mean, rstd, N, C, eps, config):
        cohort_stats_kernel[self.grid(N, config)](
            inp, mean, rstd, C, eps,
            WIDTH=config.block,
            LOG2_WIDTH=config.log2_block,
            num_warps=config.num_warps,
        )


class HardwareCohortReducer(RowStatsReducer):
    strategy = Strategy.HARDWARE_COHORT

    def configure(self, cohort_width, device, reduce_mode=ReduceMode.SHUFFLE):
        check_cohort_width(cohort_width)
        native = native_cohort_width(device)
        if cohort_width != native:
            raise LayerNormConfigError(
                f"hardware cohort strategy needs the native cooperative width {native} "
                f"on {device}, got {cohort_width}"
            )
        reduce_mode = parse_reduce_mode(reduce_mode)
        hint = AccessHint.STREAMING
        if not supports_streaming_hints(device):
            logger.warning("streaming access hints unavailable on {}; using default loads and stores", device)
            hint = AccessHint.DEFAULT
        return LaunchConfig(
            strategy=self.strategy,
            cohort_width=cohort_width,
            block=cohort_width,
            log2_block=log2(cohort_width),
            num_warps=1,
            reduce_mode=reduce_mode,
            access_hint=hint,
        )

    def launch(self, inp, mean, rstd, N, C, eps, config):
        hardware_cohort_stats_kernel[self.grid(N, config)](
            inp, mean, rstd, C, eps,
            WIDTH=config.block,
            LOG2_WIDTH=config.log2_block,
            REDUCE_MODE=int(config.reduce_mode),
            num_warps=config.num_warps,
        )


_REDUCERS: Dict[Strategy, RowStatsReducer] = {}


def register(reducer: RowStatsReducer) -> None:
    _REDUCERS[reducer.strategy] = reducer


def get_reducer(strategy_id: StrategyLike) -> RowStatsReducer:
    strategy = parse_strategy(strategy_id)
    if strategy not in _REDUCERS:
        raise LayerNormConfigError(f"no reducer registered for strategy {strategy.name}")
    return _REDUCERS[strategy]


register(RowPerWorkerReducer())
register(CohortReducer())
register(HardwareCohortReducer())


def normalize(buffers: LayerNormBuffers, N: int, C: int,
              access_hint: AccessHint = AccessHint.DEFAULT) -> None:
    total = N * C
    grid = (triton.cdiv(total, NORMALIZE_BLOCK_SIZE),)
    normalize_kernel[grid](
        buffers.inp, buffers.out, buffers.mean, buffers.rstd, buffers.weight, buffers.bias,
        total, C,
        BLOCK_SIZE=NORMALIZE_BLOCK_SIZE,
        ROW_EVICTION=access_hint.row_load_policy,
        BROADCAST_EVICTION=access_hint.broadcast_load_policy,
        STORE_MODIFIER=access_hint.store_modifier,
        num_warps=4,
    )


def _check_dims(B: int, T: int, C: int) -> int:
    for name, value in (("B", B), ("T", T), ("C", C)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise LayerNormConfigError(f"{name} must be an int, got {type(value).__name__}")
    if B < 0 or T < 0:
        raise LayerNormConfigError(f"B and T must be non-negative, got B={B}, T={T}")
    if C < 1:
        raise LayerNormConfigError(f"C must be at least 1, got {C}")
    return B * T


def _overlaps(a: torch.Tensor, b: torch.Tensor) -> bool:
    # contiguous tensors: each covers one byte range of its storage
    if a.numel() == 0 or b.numel() == 0:
        return False
    if a.untyped_storage().data_ptr() != b.untyped_storage().data_ptr():
        return False
    a_start = a.storage_offset() * a.element_size()
    b_start = b.storage_offset() * b.element_size()
    return a_start < b_start + b.numel() * b.element_size() and b_start < a_start + a.numel() * a.element_size()


def _check_buffers(buffers: LayerNormBuffers, N: int, C: int) -> torch.device:
    expected = {
        "inp": N * C,
        "out": N * C,
        "mean": N,
        "rstd": N,
        "weight": C,
        "bias": C,
    }
    device = buffers.inp.device
    for name, numel in expected.items():
        t = getattr(buffers, name)
        if not isinstance(t, torch.Tensor):
            raise LayerNormConfigError(f"{name} must be a torch.Tensor, got {type(t).__name__}")
        if t.dtype != torch.float32:
            raise LayerNormConfigError(f"{name} must be float32, got {t.dtype}")
        if t.numel() != numel:
            raise LayerNormConfigError(f"{name} must hold {numel} elements, got {t.numel()}")
        if not t.is_contiguous():
            raise LayerNormConfigError(f"{name} must be contiguous (row-major)")
        if t.device != device:
            raise LayerNormConfigError(f"{name} is on {t.device}, expected {device}")
    for written in ("out", "mean", "rstd"):
        for other in expected:
            if other != written and _overlaps(getattr(buffers, written), getattr(buffers, other)):
                raise LayerNormConfigError(f"{written} must not alias {other}")
    return device


def run(strategy: StrategyLike, buffers: LayerNormBuffers, B: int, T: int, C: int,
        cohort_width: int, *, eps: float = EPS,
        reduce_mode: ReduceMode = ReduceMode.SHUFFLE) -> LayerNormBuffers:
    """
    Validate everything, then launch the strategy's reducer followed by the normalizer.

    Nothing is written unless every check passes. Triton launches on one stream
    execute in order, so the normalizer only starts after the reducer's last
    program has stored its row statistics. The one exception to all-or-nothing
    is a platform refusal of the normalizer launch itself: ``mean`` and
    ``rstd`` are then already written while ``out`` is not, and the raised
    ``LayerNormLaunchError`` says so.
    """
    reducer = get_reducer(strategy)
    N = _check_dims(B, T, C)
    device = _check_buffers(buffers, N, C)
    reduce_mode = parse_reduce_mode(reduce_mode)
    config = reducer.configure(cohort_width, device, reduce_mode)
    logger.debug("layernorm forward N={} C={} config={}", N, C, config)

    if N == 0:
        return buffers

    try:
        reducer.launch(buffers.inp, buffers.mean, buffers.rstd, N, C, eps, config)
    except OutOfResources as e:
        raise LayerNormLaunchError(
            f"{config.strategy.name} launch exceeds platform limits (cohort width {config.cohort_width}): {e}"
        ) from e
    try:
        normalize(buffers, N, C, config.access_hint)
    except OutOfResources as e:
        raise LayerNormLaunchError(
            f"normalizer launch exceeds platform limits; mean and rstd were already written, out was not: {e}"
        ) from e
    return buffers


def layernorm_forward(strategy_id: StrategyLike, out: torch.Tensor, mean: torch.Tensor,
                      rstd: torch.Tensor, inp: torch.Tensor, weight: torch.Tensor,
                      bias: torch.Tensor, B: int, T: int, C: int, cohort_width: int,
                      *, eps: float = EPS,
                      reduce_mode: ReduceMode = ReduceMode.SHUFFLE
                      ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    buffers = LayerNormBuffers(out=out, mean=mean, rstd=rstd, inp=inp, weight=weight, bias=bias)
    run(strategy_id, buffers, B, T, C, cohort_width, eps=eps, reduce_mode=reduce_mode)
    return out, mean, rstd


def default_cohort_width(strategy_id: StrategyLike, device: Optional[torch.device] = None) -> int:
    strategy = parse_strategy(strategy_id)
    if strategy is Strategy.ROW_PER_WORKER:
        return 128
    if strategy is Strategy.COHORT:
        return 256
    return native_cohort_width(device)
