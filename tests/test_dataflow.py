"""Reaching copies: indexing, local sets, the two solver phases and ACPs."""

from copyprop.ir.cfg import get_cfg, reverse_postorder
from copyprop.ir.nodes import Argument, Integer, Store
from copyprop.opt.bitvector import BitVector
from copyprop.opt.dataflow import (
    DataFlowAnalysis,
    ReachingCopiesSolver,
    SolverPhase,
    build_local_sets,
    index_copies,
)
from tests.conftest import parse_function

DIAMOND = """
define i32 @diamond(i32 %a, i32 %b, i1 %c) {
entry:
  %p = alloca i32
  store i32 %a, ptr %p
  br i1 %c, label %then, label %join

then:
  store i32 %b, ptr %p
  br label %join

join:
  %0 = load i32, ptr %p
  ret i32 %0
}
"""


def block_map(fn):
    return {block.label: block for block in fn.blocks}


def describe(copy) -> str:
    if isinstance(copy, Argument):
        return f"arg {copy.name}"
    assert isinstance(copy, Store)
    return f"-> {copy.dest.name}"


def test_copy_indices_follow_layout(ex5):
    scale = ex5.get_function("scale")
    index = index_copies(scale)
    assert index.nr_copies == 7
    assert [describe(copy) for copy in index.idx_copy] == [
        "arg x",
        "-> x.addr",
        "-> retval",
        "-> i",
        "-> arrayidx",
        "-> i",
        "-> retval",
    ]
    for idx, copy in enumerate(index.idx_copy):
        assert index.copy_idx[copy] == idx
    blocks = block_map(scale)
    assert index.copy_block[index.idx_copy[0]] is None
    assert index.copy_block[index.idx_copy[4]] is blocks["for.body"]


def test_argument_operands_are_identity(ex5):
    scale = ex5.get_function("scale")
    index = index_copies(scale)
    x = scale.args[0]
    assert index.operands(0) == (x, x)
    src, dest = index.operands(1)
    assert src is x and dest.name == "x.addr"


def test_copy_and_kill_sets(ex5):
    scale = ex5.get_function("scale")
    index = index_copies(scale)
    order = reverse_postorder(scale.blocks, get_cfg(scale.blocks))
    bb_info = build_local_sets(order, index)
    blocks = block_map(scale)
    expected = {
        "entry": ([1], []),
        "if.then": ([2], [6]),
        "if.end": ([3], [5]),
        "for.cond": ([], []),
        "for.body": ([4], []),
        "for.inc": ([5], [3]),
        "for.end": ([6], [2]),
        "return": ([], []),
    }
    for label, (copy, kill) in expected.items():
        info = bb_info[blocks[label]]
        assert list(info.copy) == copy, label
        assert list(info.kill) == kill, label


def test_store_to_parameter_kills_it():
    fn = parse_function(
        """
define void @f(ptr %p) {
entry:
  br label %body

body:
  store i32 1, ptr %p
  ret void
}
"""
    )
    dfa = DataFlowAnalysis(fn)
    body = block_map(fn)["body"]
    assert list(dfa.get_info(body).kill) == [0]
    assert list(dfa.get_info(body).copy) == [1]


def test_scale_fixed_point(ex5):
    scale = ex5.get_function("scale")
    dfa = DataFlowAnalysis(scale)
    cp_in = {block.label: list(dfa.get_info(block).cp_in) for block in dfa.order}
    assert cp_in == {
        "entry": [],
        "if.end": [1],
        "for.cond": [1],
        "for.end": [1],
        "for.body": [1],
        "for.inc": [1, 4],
        "if.then": [1],
        "return": [1],
    }
    for block in dfa.order:
        info = dfa.get_info(block)
        assert info.cp_out == info.copy | (info.cp_in - info.kill)


def test_scale_acps(ex5):
    scale = ex5.get_function("scale")
    dfa = DataFlowAnalysis(scale)
    blocks = block_map(scale)
    x = scale.args[0]
    acp = dfa.get_acp(blocks["for.body"])
    assert [(key.name, value) for key, value in acp.items()] == [("x.addr", x)]
    acp = dfa.get_acp(blocks["for.inc"])
    assert [(key.name, value.name) for key, value in acp.items()] == [
        ("x.addr", "x"),
        ("arrayidx", "mul"),
    ]
    assert dfa.get_acp(blocks["entry"]) == {}


def test_main_acps(ex5):
    main = ex5.get_function("main")
    dfa = DataFlowAnalysis(main)
    blocks = block_map(main)
    assert [block.label for block in dfa.order] == [
        "entry",
        "while.cond",
        "while.end",
        "while.body",
    ]
    assert list(dfa.get_info(blocks["while.end"]).cp_in) == [0, 1]
    acp = dfa.get_acp(blocks["while.end"])
    assert {key.name: value.value for key, value in acp.items()} == {
        "retval": 0,
        "z": 9,
    }
    assert all(isinstance(value, Integer) for value in acp.values())
    # The loop redefines i, so no copy of it reaches the loop header.
    assert "i" not in {key.name for key in dfa.get_acp(blocks["while.cond"])}


def test_union_then_intersection():
    fn = parse_function(DIAMOND)
    cfg = get_cfg(fn.blocks)
    order = reverse_postorder(fn.blocks, cfg)
    index = index_copies(fn)
    bb_info = build_local_sets(order, index)
    join = block_map(fn)["join"]
    solver = ReachingCopiesSolver(order, cfg, bb_info, index.nr_copies)

    solver.run_phase(SolverPhase.UNION)
    assert list(bb_info[join].cp_in) == [3, 4]
    solver.run_phase(SolverPhase.INTERSECTION)
    assert list(bb_info[join].cp_in) == []
    assert set(solver.sweeps) == {SolverPhase.UNION, SolverPhase.INTERSECTION}


def test_killed_copy_does_not_reach():
    fn = parse_function(DIAMOND)
    dfa = DataFlowAnalysis(fn)
    blocks = block_map(fn)
    assert list(dfa.get_info(blocks["then"]).kill) == [3]
    assert dfa.get_acp(blocks["join"]) == {}
    assert [key.name for key in dfa.get_acp(blocks["then"])] == ["p"]


def test_sweeps_are_bounded(ex5):
    for fn in ex5.defined_functions:
        dfa = DataFlowAnalysis(fn)
        bound = 2 * len(dfa.order) * dfa.nr_copies + 1
        for phase in SolverPhase:
            assert 1 <= dfa.sweeps[phase] <= bound


def test_no_copies():
    fn = parse_function(
        """
define i32 @f() {
entry:
  br label %exit

exit:
  ret i32 0
}
"""
    )
    dfa = DataFlowAnalysis(fn)
    assert dfa.nr_copies == 0
    assert dfa.sweeps == {SolverPhase.UNION: 1, SolverPhase.INTERSECTION: 1}
    for block in fn.blocks:
        assert dfa.get_info(block).cp_in == BitVector(0)
        assert dfa.get_acp(block) == {}


def test_single_predecessor_does_not_share_sets():
    fn = parse_function(DIAMOND)
    dfa = DataFlowAnalysis(fn)
    blocks = block_map(fn)
    then_in = dfa.get_info(blocks["then"]).cp_in
    entry_out = dfa.get_info(fn.entry).cp_out
    assert then_in == entry_out
    assert then_in is not entry_out
    then_in.reset(3)
    assert list(entry_out) == [3]
