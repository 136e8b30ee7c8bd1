from typing import Final

from copyprop.ir.nodes import BasicBlock, Function, Op, OpVisitor, Value


class PatchVisitor(OpVisitor[None]):
    """Redirect operands that name replaced values.

    op_map maps a removed value to the value that takes its place; chains
    are followed to their end.
    """

    def __init__(self, op_map: dict[Value, Value]) -> None:
        self.op_map: Final = op_map
        self.patched = 0

    def fix_op(self, value: Value) -> Value:
        seen = set()
        while value in self.op_map:
            assert value not in seen, "cycle in replacement map"
            seen.add(value)
            value = self.op_map[value]
        return value

    def op(self, op: Op) -> None:
        sources = op.sources()
        new = [self.fix_op(src) for src in sources]
        if any(a is not b for a, b in zip(sources, new)):
            self.patched += 1
            op.set_sources(new)

    def fix_block(self, block: BasicBlock) -> None:
        if not self.op_map:
            return
        for op in block.ops:
            op.accept(self)

    def fix_table(self, table: dict[Value, Value]) -> None:
        """Patch keys and values of table, keeping its order."""
        if not self.op_map:
            return
        items = [(self.fix_op(key), self.fix_op(value)) for key, value in table.items()]
        table.clear()
        table.update(items)


def replace_uses(fn: Function, op_map: dict[Value, Value]) -> int:
    """Rewrite every operand of fn named in op_map. Returns the number of ops changed."""
    patcher = PatchVisitor(op_map)
    for block in fn.blocks:
        patcher.fix_block(block)
    return patcher.patched
