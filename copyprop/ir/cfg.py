from copyprop.ir.nodes import BasicBlock, ControlOp, Function, Op


class MalformedIRError(Exception):
    pass


class CFG:
    """Control-flow graph.

    Block 0 is always assumed to be the entry point.
    """

    def __init__(
        self,
        succ: dict[BasicBlock, list[BasicBlock]],
        pred: dict[BasicBlock, list[BasicBlock]],
        exits: set[BasicBlock],
    ) -> None:
        self.succ = succ
        self.pred = pred
        self.exits = exits

    def __str__(self) -> str:
        exits = sorted(block.label for block in self.exits)
        return f"exits: {exits}\nsucc: {self.succ}\npred: {self.pred}"


def get_cfg(blocks: list[BasicBlock]) -> CFG:
    """Calculate basic block control-flow graph."""
    succ_map = {}
    pred_map: dict[BasicBlock, list[BasicBlock]] = {}
    exits = set()
    for block in blocks:
        assert not any(
            isinstance(op, ControlOp) for op in block.ops[:-1]
        ), "Control-flow ops must be at the end of blocks"

        succ = list(block.terminator.targets())
        if not succ:
            exits.add(block)

        succ_map[block] = succ
        pred_map[block] = []
    for prev, nxt in succ_map.items():
        for label in nxt:
            # A block branching twice to the same target is one edge.
            if prev not in pred_map[label]:
                pred_map[label].append(prev)
    return CFG(succ_map, pred_map, exits)


def reverse_postorder(blocks: list[BasicBlock], cfg: CFG) -> list[BasicBlock]:
    """Return the blocks reachable from blocks[0] in reverse postorder.

    Successors are visited in terminator order, so for a conditional branch
    the true target is explored first.
    """
    if not blocks:
        return []
    visited: set[BasicBlock] = set()
    postorder: list[BasicBlock] = []

    # Iterative DFS; deep loop nests would overflow the recursion limit.
    stack: list[tuple[BasicBlock, int]] = [(blocks[0], 0)]
    visited.add(blocks[0])
    while stack:
        block, i = stack.pop()
        succ = cfg.succ[block]
        if i < len(succ):
            stack.append((block, i + 1))
            nxt = succ[i]
            if nxt not in visited:
                visited.add(nxt)
                stack.append((nxt, 0))
        else:
            postorder.append(block)
    postorder.reverse()
    return postorder


def check_function(fn: Function) -> CFG:
    """Check the preconditions of the copy propagation pass.

    Returns the CFG of fn. Raises MalformedIRError if fn has unterminated
    blocks, control ops in the middle of a block, branches to blocks outside
    fn, an entry block with predecessors, unreachable blocks, or operands that
    refer to ops which are not part of fn.
    """
    if fn.is_declaration:
        raise MalformedIRError(f"@{fn.name} is a declaration")
    block_set = set(fn.blocks)
    ops: set[Op] = set()
    for block in fn.blocks:
        if not block.terminated:
            raise MalformedIRError(
                f"block {block_name(fn, block)} in @{fn.name} is not terminated"
            )
        for op in block.ops[:-1]:
            if isinstance(op, ControlOp):
                raise MalformedIRError(
                    f"control op in the middle of block {block_name(fn, block)} in @{fn.name}"
                )
        for target in block.terminator.targets():
            if target not in block_set:
                raise MalformedIRError(
                    f"block {block_name(fn, block)} in @{fn.name} branches outside the function"
                )
        ops.update(block.ops)

    for block in fn.blocks:
        for op in block.ops:
            for src in op.sources():
                if isinstance(src, Op) and src not in ops:
                    raise MalformedIRError(
                        f"operand of {type(op).__name__} in block "
                        f"{block_name(fn, block)} of @{fn.name} is not in the function"
                    )

    cfg = get_cfg(fn.blocks)
    if cfg.pred[fn.entry]:
        raise MalformedIRError(f"entry block of @{fn.name} has predecessors")
    reachable = set(reverse_postorder(fn.blocks, cfg))
    unreachable = [block for block in fn.blocks if block not in reachable]
    if unreachable:
        names = ", ".join(block_name(fn, block) for block in unreachable)
        raise MalformedIRError(f"unreachable blocks in @{fn.name}: {names}")
    return cfg


def remove_unreachable_blocks(fn: Function) -> int:
    """Delete blocks that cannot be reached from the entry block.

    Returns the number of removed blocks.
    """
    cfg = get_cfg(fn.blocks)
    reachable = set(reverse_postorder(fn.blocks, cfg))
    orig_blocks = fn.blocks.copy()
    fn.blocks.clear()
    for block in orig_blocks:
        if block in reachable:
            fn.blocks.append(block)
    return len(orig_blocks) - len(fn.blocks)


def block_name(fn: Function, block: BasicBlock) -> str:
    if block.label:
        return f"%{block.label}"
    return f"#{fn.blocks.index(block)}"
