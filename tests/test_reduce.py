import pytest
import torch
import triton
import triton.language as tl

from cohort_layernorm.config import ReduceMode, log2
from cohort_layernorm.reduce import cohort_group_reduce, cohort_tree_reduce


@triton.jit
def _group_sum_kernel(x_ptr, out_ptr, WIDTH: tl.constexpr, LOG2_WIDTH: tl.constexpr,
                      REDUCE_MODE: tl.constexpr):
    x = tl.load(x_ptr + tl.arange(0, WIDTH))
    tl.store(out_ptr, cohort_group_reduce(x, WIDTH, LOG2_WIDTH, REDUCE_MODE))


@triton.jit
def _tree_sum_rows_kernel(x_ptr, out_ptr, WIDTH: tl.constexpr, LOG2_WIDTH: tl.constexpr):
    row = tl.program_id(0)
    x = tl.load(x_ptr + row * WIDTH + tl.arange(0, WIDTH))
    tl.store(out_ptr + row, cohort_tree_reduce(x, WIDTH, LOG2_WIDTH))


@pytest.mark.parametrize("width", [2, 8, 32, 256, 1024])
@pytest.mark.parametrize("mode", [ReduceMode.SHUFFLE, ReduceMode.SCRATCH])
def test_group_reduce_sums_every_lane(device, width, mode):
    # small integers keep every partial sum exact regardless of order
    x = torch.arange(width, dtype=torch.float32, device=device)
    out = torch.zeros(1, dtype=torch.float32, device=device)
    _group_sum_kernel[(1,)](x, out, WIDTH=width, LOG2_WIDTH=log2(width),
                            REDUCE_MODE=int(mode), num_warps=1)
    assert out.item() == width * (width - 1) / 2


def test_tree_reduce_is_per_program(device):
    width, rows = 64, 5
    x = torch.ones(rows, width, dtype=torch.float32, device=device)
    x *= torch.arange(1, rows + 1, dtype=torch.float32, device=device)[:, None]
    out = torch.zeros(rows, dtype=torch.float32, device=device)
    _tree_sum_rows_kernel[(rows,)](x, out, WIDTH=width, LOG2_WIDTH=log2(width), num_warps=2)
    expected = torch.arange(1, rows + 1, dtype=torch.float32) * width
    assert torch.equal(out.cpu(), expected)


def test_tree_reduce_matches_float64_sum(device):
    width = 128
    g = torch.Generator().manual_seed(3)
    x = torch.randn(width, generator=g)
    out = torch.zeros(1, dtype=torch.float32, device=device)
    _group_sum_kernel[(1,)](x.to(device), out, WIDTH=width, LOG2_WIDTH=log2(width),
                            REDUCE_MODE=int(ReduceMode.SCRATCH), num_warps=4)
    assert abs(out.item() - x.double().sum().item()) < 1e-4
