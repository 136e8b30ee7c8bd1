"""Local and global copy propagation over memory locations.

A Store makes its destination a copy of its source and a Load of a location
that holds a known copy is replaced by that copy. The local pass starts
every block from an empty table. The global pass seeds each block from the
available-copy table computed by DataFlowAnalysis.
"""

import logging
import sys
from dataclasses import dataclass
from typing import TextIO

from copyprop.ir.cfg import CFG, check_function
from copyprop.ir.nodes import BasicBlock, Function, Load, Op, OpVisitor, Store, Value
from copyprop.ir.printer import format_function
from copyprop.opt.dataflow import ACPTable, DataFlowAnalysis
from copyprop.opt.ir_transform import PatchVisitor, replace_uses

logger = logging.getLogger(__name__)


class CopyPropagationTransform(OpVisitor[None]):
    """Rewrite the ops of one block from a destination -> source table.

    The table is updated in place while the block is scanned. Loads whose
    value is known are collected in removed and erased by run().
    """

    def __init__(self, acp: ACPTable) -> None:
        self.acp = acp
        self.removed: dict[Value, Value] = {}
        self.rewritten = 0

    def run(self, block: BasicBlock) -> None:
        for op in block.ops:
            op.accept(self)
        if self.removed:
            block.ops[:] = [op for op in block.ops if op not in self.removed]

    def resolve_address(self, value: Value) -> Value:
        # A pointer loaded earlier in this block may already be gone.
        return self.removed.get(value, value)

    def store(self, op: Store) -> None:
        acp = self.acp
        op.dest = self.resolve_address(op.dest)
        dest = op.dest
        for key in [key for key, value in acp.items() if value is dest]:
            del acp[key]
        acp.pop(dest, None)
        if op.src in acp:
            op.src = acp[op.src]
            self.rewritten += 1
        acp[dest] = op.src

    def load(self, op: Load) -> None:
        op.src = self.resolve_address(op.src)
        if op.src in self.acp:
            value = self.acp[op.src]
            self.acp[op] = value
            self.removed[op] = value

    def op(self, op: Op) -> None:
        sources = op.sources()
        new = [self.acp.get(src, src) for src in sources]
        changed = sum(a is not b for a, b in zip(sources, new))
        if changed:
            op.set_sources(new)
            self.rewritten += changed


def propagate_copies(block: BasicBlock, acp: ACPTable) -> CopyPropagationTransform:
    """Propagate the copies of acp through block. acp is updated in place."""
    transform = CopyPropagationTransform(acp)
    transform.run(block)
    return transform


@dataclass
class PropagationStats:
    loads_removed: int = 0
    operands_rewritten: int = 0

    def add(self, transform: CopyPropagationTransform) -> None:
        self.loads_removed += len(transform.removed)
        self.operands_rewritten += transform.rewritten


def local_copy_propagation(fn: Function) -> PropagationStats:
    stats = PropagationStats()
    replacements: dict[Value, Value] = {}
    patcher = PatchVisitor(replacements)
    for block in fn.blocks:
        patcher.fix_block(block)
        transform = propagate_copies(block, {})
        replacements.update(transform.removed)
        stats.add(transform)
    # Blocks laid out before the one defining a removed load may still use it.
    replace_uses(fn, replacements)
    logger.debug(
        "@%s local: %d loads removed, %d operands rewritten",
        fn.name,
        stats.loads_removed,
        stats.operands_rewritten,
    )
    return stats


def global_copy_propagation(
    fn: Function,
    cfg: CFG | None = None,
    verbose: bool = False,
    stream: TextIO | None = None,
) -> tuple[DataFlowAnalysis, PropagationStats]:
    if cfg is None:
        cfg = check_function(fn)
    dfa = DataFlowAnalysis(fn, cfg)
    if verbose:
        dfa.dump(stream)

    stats = PropagationStats()
    replacements: dict[Value, Value] = {}
    patcher = PatchVisitor(replacements)
    for block in fn.blocks:
        patcher.fix_block(block)
        # The table is copied so the analysis result stays as computed.
        acp = dict(dfa.get_acp(block))
        patcher.fix_table(acp)
        transform = propagate_copies(block, acp)
        replacements.update(transform.removed)
        stats.add(transform)
    replace_uses(fn, replacements)
    logger.debug(
        "@%s global: %d loads removed, %d operands rewritten",
        fn.name,
        stats.loads_removed,
        stats.operands_rewritten,
    )
    return dfa, stats


@dataclass
class CopyPropagationResult:
    local: PropagationStats
    global_: PropagationStats | None = None
    analysis: DataFlowAnalysis | None = None

    @property
    def changed(self) -> bool:
        stats = [self.local] if self.global_ is None else [self.local, self.global_]
        return any(s.loads_removed or s.operands_rewritten for s in stats)


def run_copy_propagation(
    fn: Function,
    *,
    verbose: bool = False,
    stream: TextIO | None = None,
    local_only: bool = False,
) -> CopyPropagationResult:
    """Run the local pass and then, unless local_only, the global pass on fn.

    With verbose the function text after each pass and the analysis tables
    are printed to stream (sys.stderr by default).
    """
    if stream is None:
        stream = sys.stderr
    cfg = check_function(fn)

    result = CopyPropagationResult(local_copy_propagation(fn))
    if verbose:
        print("post local", file=stream)
        print(format_function(fn), file=stream)
        print(file=stream)
    if local_only:
        return result

    result.analysis, result.global_ = global_copy_propagation(
        fn, cfg, verbose, stream
    )
    if verbose:
        print("post global", file=stream)
        print(format_function(fn), file=stream)
        print(file=stream)
    return result
