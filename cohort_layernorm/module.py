from typing import Optional, Tuple

import torch

from .config import EPS, ReduceMode, Strategy, StrategyLike, parse_strategy
from .dispatch import default_cohort_width, layernorm_forward


class TritonLayerNorm(torch.nn.Module):
    """Forward-only LayerNorm over the last dimension, backed by the cohort kernels."""

    def __init__(self, dim, eps=EPS, strategy: StrategyLike = Strategy.HARDWARE_COHORT,
                 cohort_width: Optional[int] = None, reduce_mode=ReduceMode.SHUFFLE):
        super().__init__()
        self.eps = eps
        self.dim = dim
        self.strategy = parse_strategy(strategy)
        self.cohort_width = cohort_width
        self.reduce_mode = reduce_mode
        self.weight = torch.nn.Parameter(torch.ones(dim))
        self.bias = torch.nn.Parameter(torch.zeros(dim))
        self.last_mean: Optional[torch.Tensor] = None
        self.last_rstd: Optional[torch.Tensor] = None

    def forward_with_stats(self, x: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        if x.dim() == 3:
            B, T, C = x.shape
        elif x.dim() == 2:
            (B, C), T = x.shape, 1
        else:
            raise ValueError(f"expected (B, T, C) or (N, C) input, got shape {tuple(x.shape)}")
        assert C == self.dim, f"Input dimension {C} doesn't match layer dimension {self.dim}"

        x = x.contiguous()
        N = B * T
        out = torch.empty_like(x)
        mean = torch.empty(N, device=x.device, dtype=torch.float32)
        rstd = torch.empty(N, device=x.device, dtype=torch.float32)
        cohort_width = self.cohort_width or default_cohort_width(self.strategy, x.device)

        with torch.no_grad():
            layernorm_forward(
                self.strategy, out, mean, rstd, x,
                self.weight.detach(), self.bias.detach(),
                B, T, C, cohort_width,
                eps=self.eps, reduce_mode=self.reduce_mode,
            )
        self.last_mean, self.last_rstd = mean, rstd
        return out, mean, rstd

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.forward_with_stats(x)[0]

    def extra_repr(self) -> str:
        return f"{self.dim}, eps={self.eps}, strategy={self.strategy.name.lower()}"
