"""Textual form of the IR.

The syntax is the LLVM assembly subset read by copyprop.parser, so printed
functions can be read back in. Unnamed values and blocks are numbered in
slot order (arguments, then each block label and each non-void result), the
same way LLVM renumbers a function after instructions are deleted.
"""

from copyprop.ir.nodes import (
    Alloca,
    Argument,
    BasicBlock,
    Binary,
    Branch,
    Call,
    Cast,
    Comparison,
    CString,
    Function,
    GetElementPtr,
    GlobalVariable,
    Goto,
    Integer,
    Load,
    Module,
    Op,
    OpVisitor,
    Return,
    Store,
    Undef,
    Unreachable,
    Value,
    ZeroInitializer,
)
from copyprop.ir.types import IntType


def escape_bytes(data: bytes) -> str:
    chars = []
    for byte in data:
        if 0x20 <= byte < 0x7F and byte not in (ord('"'), ord("\\")):
            chars.append(chr(byte))
        else:
            chars.append(f"\\{byte:02X}")
    return "".join(chars)


class IRPrinter(OpVisitor[str]):
    def __init__(self, fn: Function | None = None) -> None:
        self.slots: dict[object, int] = {}
        if fn is not None:
            self.number(fn)

    def number(self, fn: Function) -> None:
        self.slots.clear()
        slot = 0
        for arg in fn.args:
            if not arg.name:
                self.slots[arg] = slot
                slot += 1
        for block in fn.blocks:
            if not block.label:
                self.slots[block] = slot
                slot += 1
            for op in block.ops:
                if not op.is_void and not op.name:
                    self.slots[op] = slot
                    slot += 1

    def local_name(self, value: object, name: str) -> str:
        if name:
            return f"%{name}"
        slot = self.slots.get(value)
        if slot is None:
            return "<badref>"
        return f"%{slot}"

    def label(self, block: BasicBlock) -> str:
        return self.local_name(block, block.label)

    def ref(self, value: Value) -> str:
        if isinstance(value, (GlobalVariable, Function)):
            return f"@{value.name}"
        if isinstance(value, Integer):
            if value.type == IntType(1):
                return "true" if value.value else "false"
            return str(value.value)
        if isinstance(value, Undef):
            return "undef"
        if isinstance(value, ZeroInitializer):
            return "zeroinitializer"
        if isinstance(value, CString):
            return f'c"{escape_bytes(value.value)}"'
        return self.local_name(value, value.name)

    def typed(self, value: Value) -> str:
        return f"{value.type} {self.ref(value)}"

    def result(self, op: Op, text: str) -> str:
        if op.is_void:
            return text
        return f"{self.ref(op)} = {text}"

    @staticmethod
    def with_align(text: str, align: int | None) -> str:
        if align is None:
            return text
        return f"{text}, align {align}"

    def format_op(self, op: Op) -> str:
        return op.accept(self)

    def alloca(self, op: Alloca) -> str:
        return self.result(op, self.with_align(f"alloca {op.allocated_type}", op.align))

    def load(self, op: Load) -> str:
        return self.result(
            op, self.with_align(f"load {op.type}, {self.typed(op.src)}", op.align)
        )

    def store(self, op: Store) -> str:
        return self.with_align(
            f"store {self.typed(op.src)}, {self.typed(op.dest)}", op.align
        )

    def binary(self, op: Binary) -> str:
        words = [op.op.value, *op.flags, str(op.type)]
        return self.result(
            op, f"{' '.join(words)} {self.ref(op.left)}, {self.ref(op.right)}"
        )

    def comparison(self, op: Comparison) -> str:
        return self.result(
            op,
            f"icmp {op.op.value} {self.typed(op.left)}, {self.ref(op.right)}",
        )

    def cast(self, op: Cast) -> str:
        return self.result(op, f"{op.op.value} {self.typed(op.value)} to {op.type}")

    def get_element_ptr(self, op: GetElementPtr) -> str:
        keyword = "getelementptr inbounds" if op.inbounds else "getelementptr"
        operands = ", ".join(self.typed(v) for v in [op.ptr, *op.indices])
        return self.result(op, f"{keyword} {op.source_type}, {operands}")

    def call(self, op: Call) -> str:
        callee = str(op.fn.return_type)
        if op.fn.var_arg:
            callee = str(op.fn.function_type)
        args = ", ".join(
            " ".join([str(arg.type), *attrs, self.ref(arg)])
            for arg, attrs in zip(op.args, op.arg_attrs)
        )
        text = " ".join([*op.prefix, f"call {callee} {self.ref(op.fn)}({args})"])
        if op.attr_group is not None:
            text += f" {op.attr_group}"
        return self.result(op, text)

    def goto(self, op: Goto) -> str:
        return f"br label {self.label(op.label)}"

    def branch(self, op: Branch) -> str:
        return (
            f"br {self.typed(op.value)}, label {self.label(op.true_label)}, "
            f"label {self.label(op.false_label)}"
        )

    def visit_return(self, op: Return) -> str:
        if op.value is None:
            return "ret void"
        return f"ret {self.typed(op.value)}"

    def unreachable(self, op: Unreachable) -> str:
        return "unreachable"

    def op(self, op: Op) -> str:
        raise Exception(f"cannot print {type(op).__name__}")

    def format_value(self, value: Value) -> str:
        """Render a single value the way it appears when it is defined."""
        if isinstance(value, Op):
            return "  " + self.format_op(value)
        if isinstance(value, GlobalVariable):
            return format_global(value)
        if isinstance(value, Function):
            return format_signature(value, self)
        if isinstance(value, Argument):
            return self.typed(value)
        return self.typed(value)


def format_global(var: GlobalVariable) -> str:
    words = [f"@{var.name} ="]
    if var.linkage:
        words.append(var.linkage)
    words.extend(var.qualifiers)
    if var.unnamed_addr:
        words.append("unnamed_addr")
    words.append("constant" if var.constant else "global")
    words.append(str(var.value_type))
    if var.initializer is not None:
        words.append(IRPrinter().ref(var.initializer))
    text = " ".join(words)
    if var.align is not None:
        text += f", align {var.align}"
    return text


def format_signature(fn: Function, printer: IRPrinter) -> str:
    args = []
    for arg in fn.args:
        words = [str(arg.type), *arg.attrs]
        if not fn.is_declaration:
            words.append(printer.ref(arg))
        args.append(" ".join(words))
    if fn.var_arg:
        args.append("...")
    words = ["declare" if fn.is_declaration else "define", *fn.prefix]
    words.append(f"{fn.return_type} @{fn.name}({', '.join(args)})")
    words.extend(fn.suffix)
    if fn.attr_group is not None:
        words.append(str(fn.attr_group))
    return " ".join(words)


def predecessors(fn: Function) -> dict[BasicBlock, list[BasicBlock]]:
    """Predecessors of each block, most recently laid out first.

    This is the order LLVM lists them in, since a branch adds its use to the
    front of the target's use list.
    """
    preds: dict[BasicBlock, list[BasicBlock]] = {block: [] for block in fn.blocks}
    for block in reversed(fn.blocks):
        if not block.terminated:
            continue
        for target in reversed(block.terminator.targets()):
            if target in preds:
                preds[target].append(block)
    return preds


def format_block_header(name: str, preds: list[str]) -> str:
    header = f"{name}:"
    if not preds:
        return header
    padding = " " * max(50 - len(header), 1)
    return f"{header}{padding}; preds = {', '.join(preds)}"


def format_function(fn: Function) -> str:
    printer = IRPrinter(fn)
    lines = []
    if fn.attr_group is not None and fn.attr_group.function_attributes:
        attrs = " ".join(fn.attr_group.function_attributes)
        lines.append(f"; Function Attrs: {attrs}")
    if fn.is_declaration:
        lines.append(format_signature(fn, printer))
        return "\n".join(lines)
    lines.append(format_signature(fn, printer) + " {")
    preds = predecessors(fn)
    for i, block in enumerate(fn.blocks):
        if i > 0:
            lines.append("")
        pred_names = [printer.label(pred) for pred in preds[block]]
        if block.label:
            lines.append(format_block_header(block.label, pred_names))
        elif i > 0:
            lines.append(format_block_header(str(printer.slots[block]), pred_names))
        for op in block.ops:
            lines.append("  " + printer.format_op(op))
    lines.append("}")
    return "\n".join(lines)


def format_module(module: Module) -> str:
    parts = []
    header = []
    if module.module_id is not None:
        header.append(f"; ModuleID = '{module.module_id}'")
    if module.source_filename is not None:
        header.append(f'source_filename = "{escape_bytes(module.source_filename.encode())}"')
    if module.datalayout is not None:
        header.append(f'target datalayout = "{module.datalayout}"')
    if module.triple is not None:
        header.append(f'target triple = "{module.triple}"')
    if header:
        parts.append("\n".join(header))
    if module.globals:
        parts.append("\n".join(format_global(var) for var in module.globals))
    for fn in module.functions:
        parts.append(format_function(fn))
    groups = sorted(module.attribute_groups.values(), key=lambda group: group.number)
    if groups:
        parts.append(
            "\n".join(
                f"attributes {group} = {{ {' '.join(group.attributes)} }}"
                for group in groups
            )
        )
    return "\n\n".join(parts) + "\n"
