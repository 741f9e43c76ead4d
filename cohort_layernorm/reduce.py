"""
Cohort-wide sums for kernels where one program's lanes cooperate on a row.

Every lane holds one partial in ``partials`` (shape ``[WIDTH]``). The helpers
return the cohort total as a scalar visible to every lane.
"""

import triton
import triton.language as tl


@triton.jit
def cohort_tree_reduce(partials, WIDTH: tl.constexpr, LOG2_WIDTH: tl.constexpr):
    # halving tree: at each step lane k absorbs lane k + half, so the active
    # width goes WIDTH -> WIDTH/2 -> ... -> 1 in LOG2_WIDTH steps
    scratch = partials
    for step in tl.static_range(LOG2_WIDTH):
        # every lane's write from the previous step must land before it is read
        tl.debug_barrier()
        scratch = tl.sum(tl.reshape(scratch, (2, WIDTH >> (step + 1))), axis=0)
    tl.debug_barrier()
    return tl.sum(scratch, axis=0)


@triton.jit
def cohort_group_reduce(partials, WIDTH: tl.constexpr, LOG2_WIDTH: tl.constexpr,
                        REDUCE_MODE: tl.constexpr):
    if REDUCE_MODE == 0:
        # single-warp program: lowers to register shuffles, no shared memory
        total = tl.sum(partials, axis=0)
    else:
        total = cohort_tree_reduce(partials, WIDTH, LOG2_WIDTH)
    return total
