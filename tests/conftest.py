import os
import sys
from pathlib import Path

import pytest
import torch

# Without a GPU the kernels run through Triton's CPU interpreter; the switch
# has to be set before any @triton.jit function is created.
if not torch.cuda.is_available():
    os.environ.setdefault("TRITON_INTERPRET", "1")

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def device():
    return "cuda" if torch.cuda.is_available() else "cpu"


def make_buffers(B, T, C, device, seed=0):
    g = torch.Generator().manual_seed(seed)
    N = B * T
    inp = torch.randn(B, T, C, generator=g).to(device)
    weight = torch.randn(C, generator=g).to(device)
    bias = torch.randn(C, generator=g).to(device)
    out = torch.empty(N * C, device=device).reshape(B, T, C)
    mean = torch.empty(N, device=device)
    rstd = torch.empty(N, device=device)
    return out, mean, rstd, inp, weight, bias
