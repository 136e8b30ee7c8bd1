from typing import TextIO

from copyprop.ir.cfg import remove_unreachable_blocks
from copyprop.ir.nodes import Module
from copyprop.opt.copy_propagation import CopyPropagationResult, run_copy_propagation


def optimize(
    module: Module,
    *,
    verbose: bool = False,
    stream: TextIO | None = None,
    local_only: bool = False,
    prune_unreachable: bool = False,
) -> dict[str, CopyPropagationResult]:
    results = {}
    for fn in module.defined_functions:
        if prune_unreachable:
            remove_unreachable_blocks(fn)
        results[fn.name] = run_copy_propagation(
            fn, verbose=verbose, stream=stream, local_only=local_only
        )
    return results
