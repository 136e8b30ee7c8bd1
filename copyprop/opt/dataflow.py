"""Global reaching-copies analysis.

A copy is a procedure argument or a Store op. Every copy gets a dense index
so the per-block COPY, KILL, CPIn and CPOut sets can be kept as bit vectors
of one common width. The sets are solved over the blocks in reverse
postorder and then turned into one available-copy table (ACP) per block,
which seeds copy propagation in that block.
"""

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from functools import reduce
from typing import TextIO, TypeAlias

from copyprop.ir.cfg import CFG, get_cfg, reverse_postorder
from copyprop.ir.nodes import Argument, BasicBlock, Function, Store, Value
from copyprop.ir.printer import IRPrinter
from copyprop.opt.bitvector import BitVector

logger = logging.getLogger(__name__)

ACPTable: TypeAlias = dict[Value, Value]


@dataclass
class BlockInfo:
    copy: BitVector
    kill: BitVector
    cp_in: BitVector
    cp_out: BitVector
    acp: ACPTable = field(default_factory=dict)

    @classmethod
    def empty(cls, nr_copies: int) -> "BlockInfo":
        return cls(
            BitVector(nr_copies),
            BitVector(nr_copies),
            BitVector(nr_copies),
            BitVector(nr_copies),
        )


class CopyIndex:
    """Dense numbering of the copies of one function.

    Arguments come first in declaration order, then Store ops in block
    layout order. A value is numbered once; adding it again is a no-op.
    """

    def __init__(self) -> None:
        self.copy_idx: dict[Value, int] = {}
        self.idx_copy: list[Value] = []
        self.copy_block: dict[Value, BasicBlock | None] = {}

    @property
    def nr_copies(self) -> int:
        return len(self.idx_copy)

    def add(self, value: Value, block: BasicBlock | None = None) -> None:
        if value in self.copy_idx:
            return
        self.copy_idx[value] = len(self.idx_copy)
        self.idx_copy.append(value)
        self.copy_block[value] = block

    def operands(self, idx: int) -> tuple[Value, Value]:
        return copy_operands(self.idx_copy[idx])

    def __len__(self) -> int:
        return self.nr_copies


def copy_operands(copy: Value) -> tuple[Value, Value]:
    """Return the (src, dest) pair of a copy.

    An argument defines itself, so its pair is (arg, arg).
    """
    if isinstance(copy, Store):
        return copy.src, copy.dest
    assert isinstance(copy, Argument), f"{copy!r} is not a copy"
    return copy, copy


def index_copies(fn: Function) -> CopyIndex:
    index = CopyIndex()
    for arg in fn.args:
        index.add(arg)
    for block in fn.blocks:
        for op in block.ops:
            if isinstance(op, Store):
                index.add(op, block)
    logger.debug("@%s: indexed %d copies", fn.name, index.nr_copies)
    return index


def build_local_sets(
    order: list[BasicBlock], index: CopyIndex
) -> dict[BasicBlock, BlockInfo]:
    """Compute the COPY and KILL sets of every block in order.

    COPY holds the Stores of the block. KILL holds every copy defined in
    another block (or an argument) whose destination is written by a Store
    of this block. A copy never kills itself.
    """
    nr_copies = index.nr_copies
    by_dest: dict[Value, list[int]] = {}
    for idx, copy in enumerate(index.idx_copy):
        _, dest = copy_operands(copy)
        by_dest.setdefault(dest, []).append(idx)

    bb_info: dict[BasicBlock, BlockInfo] = {}
    for block in order:
        info = BlockInfo.empty(nr_copies)
        for op in block.ops:
            if not isinstance(op, Store):
                continue
            info.copy.set(index.copy_idx[op])
            for idx in by_dest.get(op.dest, ()):
                if index.copy_block[index.idx_copy[idx]] is not block:
                    info.kill.set(idx)
        bb_info[block] = info
    return bb_info


def union_meet(a: BitVector, b: BitVector) -> BitVector:
    return a | b


def intersection_meet(a: BitVector, b: BitVector) -> BitVector:
    return a & b


class SolverPhase(Enum):
    """Meet operator used by a sweep of the reaching-copies solver.

    UNION runs first, from empty sets, to get an over-approximation that a
    pure intersection could never grow out of. INTERSECTION then tightens
    that result in place, without resetting the sets.
    """

    UNION = auto()
    INTERSECTION = auto()

    @property
    def meet(self) -> Callable[[BitVector, BitVector], BitVector]:
        if self is SolverPhase.UNION:
            return union_meet
        return intersection_meet


class ReachingCopiesSolver:
    def __init__(
        self,
        order: list[BasicBlock],
        cfg: CFG,
        bb_info: dict[BasicBlock, BlockInfo],
        nr_copies: int,
    ) -> None:
        self.order = order
        self.cfg = cfg
        self.bb_info = bb_info
        self.nr_copies = nr_copies
        self.sweeps: dict[SolverPhase, int] = {}

    @property
    def max_sweeps(self) -> int:
        # Each changing sweep flips at least one of the 2 * blocks * copies
        # bits, always in the same direction within a phase.
        return 2 * len(self.order) * self.nr_copies + 1

    def solve(self) -> dict[SolverPhase, int]:
        for phase in SolverPhase:
            self.run_phase(phase)
        return self.sweeps

    def run_phase(self, phase: SolverPhase) -> int:
        sweeps = 0
        changed = True
        while changed:
            sweeps += 1
            assert sweeps <= self.max_sweeps, f"{phase.name} phase did not converge"
            changed = self.sweep(phase)
        self.sweeps[phase] = sweeps
        logger.debug("%s phase converged after %d sweeps", phase.name, sweeps)
        return sweeps

    def sweep(self, phase: SolverPhase) -> bool:
        """Evaluate CPIn and CPOut of every block once, in reverse postorder."""
        meet = phase.meet
        entry = self.order[0] if self.order else None
        changed = False
        for block in self.order:
            info = self.bb_info[block]
            preds = [
                self.bb_info[pred].cp_out
                for pred in self.cfg.pred[block]
                if pred in self.bb_info
            ]
            if block is entry or not preds:
                new_in = BitVector(self.nr_copies)
            else:
                # A single predecessor would otherwise share its CPOut object.
                new_in = reduce(meet, preds).copy()
            new_out = info.copy | (new_in - info.kill)
            if new_in != info.cp_in or new_out != info.cp_out:
                changed = True
            info.cp_in = new_in
            info.cp_out = new_out
        return changed


def build_acps(bb_info: dict[BasicBlock, BlockInfo], index: CopyIndex) -> None:
    """Fill the ACP of each block from its CPIn set.

    Copies are not chased transitively here. Argument copies map to
    themselves and are left out.
    """
    for info in bb_info.values():
        info.acp.clear()
        for idx in info.cp_in:
            src, dest = index.operands(idx)
            if src is dest:
                continue
            info.acp[dest] = src


class DataFlowAnalysis:
    """Reaching copies of one function.

    All tables live here and are dropped with the object.
    """

    def __init__(self, fn: Function, cfg: CFG | None = None) -> None:
        self.fn = fn
        self.cfg = cfg if cfg is not None else get_cfg(fn.blocks)
        self.order = reverse_postorder(fn.blocks, self.cfg)
        self.index = index_copies(fn)
        self.bb_info = build_local_sets(self.order, self.index)
        solver = ReachingCopiesSolver(
            self.order, self.cfg, self.bb_info, self.index.nr_copies
        )
        self.sweeps = solver.solve()
        build_acps(self.bb_info, self.index)

    @property
    def nr_copies(self) -> int:
        return self.index.nr_copies

    def get_info(self, block: BasicBlock) -> BlockInfo:
        return self.bb_info[block]

    def get_acp(self, block: BasicBlock) -> ACPTable:
        return self.bb_info[block].acp

    def print_copy_idxs(self, stream: TextIO | None = None) -> None:
        if stream is None:
            stream = sys.stderr
        printer = IRPrinter(self.fn)
        print("copy_idx:", file=stream)
        for idx, copy in enumerate(self.index.idx_copy):
            print(f"  {idx:<3d} --> {printer.format_value(copy)}", file=stream)
        print(file=stream)

    def print_dfa(self, stream: TextIO | None = None) -> None:
        if stream is None:
            stream = sys.stderr
        printer = IRPrinter(self.fn)
        for block in self.order:
            info = self.bb_info[block]
            print(f"BB {printer.label(block)}", file=stream)
            print(f"  CPIn  {info.cp_in}", file=stream)
            print(f"  CPOut {info.cp_out}", file=stream)
            print(f"  COPY  {info.copy}", file=stream)
            print(f"  KILL  {info.kill}", file=stream)
            print("  ACP:", file=stream)
            for key, value in info.acp.items():
                print(
                    f"  {printer.format_value(key):<30}==  {printer.format_value(value)}",
                    file=stream,
                )
            print("\n", file=stream)

    def dump(self, stream: TextIO | None = None) -> None:
        if stream is None:
            stream = sys.stderr
        print("post DFA", file=stream)
        self.print_copy_idxs(stream)
        self.print_dfa(stream)
