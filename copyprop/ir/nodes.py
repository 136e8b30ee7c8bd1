from __future__ import annotations

from abc import abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

from mypy_extensions import trait

from copyprop.ir.types import (
    ArrayType,
    FunctionType,
    IntType,
    Type,
    VoidType,
    bool_type,
    i8_type,
    ptr_type,
    void_type,
)
from copyprop.source import Span, no_span

T = TypeVar("T")


@dataclass(eq=False)
class BasicBlock:
    label: str = ""
    ops: list[Op] = field(default_factory=list)

    @property
    def terminated(self) -> bool:
        return bool(self.ops) and isinstance(self.ops[-1], ControlOp)

    @property
    def terminator(self) -> ControlOp:
        assert self.ops
        assert isinstance(self.ops[-1], ControlOp)
        return self.ops[-1]

    def __repr__(self) -> str:
        return f"<BasicBlock {self.label!r} at {hex(id(self))}>"


class Value:
    """Anything usable as an operand.

    Values compare by identity; the object itself is the handle used by the
    analyses for the lifetime of one run.
    """

    span: Span = no_span
    type: Type = void_type
    name: str = ""

    @property
    def is_void(self) -> bool:
        return isinstance(self.type, VoidType)


class Argument(Value):
    def __init__(
        self,
        type: Type,
        name: str = "",
        span: Span = no_span,
        attrs: Sequence[str] = (),
    ):
        self.type = type
        self.name = name
        self.span = span
        self.attrs = list(attrs)

    def __repr__(self):
        return f"<Argument {self.name!r} at {hex(id(self))}>"


class Integer(Value):
    def __init__(self, value: int, type: IntType, span: Span = no_span):
        self.value = value
        self.type = type
        self.span = span


class Undef(Value):
    def __init__(self, type: Type):
        self.type = type


class ZeroInitializer(Value):
    def __init__(self, type: Type):
        self.type = type


class CString(Value):
    def __init__(self, value: bytes, span: Span = no_span):
        self.value = value
        self.type = ArrayType(i8_type, len(value))
        self.span = span


class GlobalVariable(Value):
    def __init__(
        self,
        name: str,
        value_type: Type,
        initializer: Value | None = None,
        constant: bool = False,
        linkage: str = "",
        unnamed_addr: bool = False,
        align: int | None = None,
        span: Span = no_span,
        qualifiers: Sequence[str] = (),
    ):
        self.name = name
        self.value_type = value_type
        self.initializer = initializer
        self.constant = constant
        self.linkage = linkage
        self.unnamed_addr = unnamed_addr
        self.align = align
        self.span = span
        self.qualifiers = list(qualifiers)
        self.type = ptr_type

    def __repr__(self):
        return f"<GlobalVariable {self.name!r}>"


class Op(Value):
    def __init__(self, span: Span = no_span, name: str = ""):
        self.span = span
        self.name = name

    @abstractmethod
    def sources(self) -> list[Value]:
        pass

    @abstractmethod
    def set_sources(self, new: list[Value]) -> None:
        pass

    def unique_sources(self) -> list[Value]:
        result = []
        for reg in self.sources():
            if reg not in result:
                result.append(reg)
        return result

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.op(self)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name!r} at {hex(id(self))}>"


class Alloca(Op):
    def __init__(
        self,
        allocated_type: Type,
        align: int | None = None,
        span: Span = no_span,
        name: str = "",
    ):
        super().__init__(span, name)
        self.allocated_type = allocated_type
        self.align = align
        self.type = ptr_type

    def sources(self) -> list[Value]:
        return []

    def set_sources(self, new: list[Value]) -> None:
        assert not new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.alloca(self)


class Load(Op):
    def __init__(
        self,
        type: Type,
        src: Value,
        align: int | None = None,
        span: Span = no_span,
        name: str = "",
    ):
        super().__init__(span, name)
        self.type = type
        self.src = src
        self.align = align

    def sources(self) -> list[Value]:
        return [self.src]

    def set_sources(self, new: list[Value]) -> None:
        (self.src,) = new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.load(self)


class Store(Op):
    def __init__(
        self,
        src: Value,
        dest: Value,
        align: int | None = None,
        span: Span = no_span,
    ):
        super().__init__(span)
        self.src = src
        self.dest = dest
        self.align = align

    def sources(self) -> list[Value]:
        return [self.src, self.dest]

    def set_sources(self, new: list[Value]) -> None:
        (self.src, self.dest) = new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.store(self)


class BinaryOp(Enum):
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    SDIV = "sdiv"
    UDIV = "udiv"
    SREM = "srem"
    UREM = "urem"
    SHL = "shl"
    LSHR = "lshr"
    ASHR = "ashr"
    AND = "and"
    OR = "or"
    XOR = "xor"


class Binary(Op):
    def __init__(
        self,
        op: BinaryOp,
        left: Value,
        right: Value,
        flags: Sequence[str] = (),
        span: Span = no_span,
        name: str = "",
    ):
        super().__init__(span, name)
        self.op = op
        self.left = left
        self.right = right
        self.flags = tuple(flags)
        self.type = left.type

    def sources(self) -> list[Value]:
        return [self.left, self.right]

    def set_sources(self, new: list[Value]) -> None:
        (self.left, self.right) = new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.binary(self)


class ComparisonOp(Enum):
    EQ = "eq"
    NE = "ne"
    SLT = "slt"
    SLE = "sle"
    SGT = "sgt"
    SGE = "sge"
    ULT = "ult"
    ULE = "ule"
    UGT = "ugt"
    UGE = "uge"


class Comparison(Op):
    def __init__(
        self,
        op: ComparisonOp,
        left: Value,
        right: Value,
        span: Span = no_span,
        name: str = "",
    ):
        super().__init__(span, name)
        self.op = op
        self.left = left
        self.right = right
        self.type = bool_type

    def sources(self) -> list[Value]:
        return [self.left, self.right]

    def set_sources(self, new: list[Value]) -> None:
        (self.left, self.right) = new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.comparison(self)


class CastOp(Enum):
    SEXT = "sext"
    ZEXT = "zext"
    TRUNC = "trunc"


class Cast(Op):
    def __init__(
        self,
        op: CastOp,
        value: Value,
        type: Type,
        span: Span = no_span,
        name: str = "",
    ):
        super().__init__(span, name)
        self.op = op
        self.value = value
        self.type = type

    def sources(self) -> list[Value]:
        return [self.value]

    def set_sources(self, new: list[Value]) -> None:
        (self.value,) = new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.cast(self)


class GetElementPtr(Op):
    def __init__(
        self,
        source_type: Type,
        ptr: Value,
        indices: Sequence[Value],
        inbounds: bool = False,
        span: Span = no_span,
        name: str = "",
    ):
        super().__init__(span, name)
        self.source_type = source_type
        self.ptr = ptr
        self.indices = list(indices)
        self.inbounds = inbounds
        self.type = ptr_type

    def sources(self) -> list[Value]:
        return [self.ptr, *self.indices]

    def set_sources(self, new: list[Value]) -> None:
        self.ptr, *self.indices = new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.get_element_ptr(self)


class Call(Op):
    def __init__(
        self,
        fn: Function,
        args: Sequence[Value],
        span: Span = no_span,
        name: str = "",
        arg_attrs: Sequence[Sequence[str]] | None = None,
        prefix: Sequence[str] = (),
        attr_group: AttributeGroup | None = None,
    ):
        super().__init__(span, name)
        self.fn = fn
        assert len(args) >= len(fn.args)
        assert fn.var_arg or len(args) == len(fn.args)
        self.args = list(args)
        if arg_attrs is None:
            arg_attrs = [()] * len(args)
        assert len(arg_attrs) == len(args)
        self.arg_attrs = [list(attrs) for attrs in arg_attrs]
        self.prefix = list(prefix)
        self.attr_group = attr_group
        self.type = fn.return_type

    def sources(self) -> list[Value]:
        return self.args.copy()

    def set_sources(self, new: list[Value]) -> None:
        self.args = new[:]

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.call(self)


class ControlOp(Op):
    def targets(self) -> Sequence[BasicBlock]:
        return ()

    def set_target(self, i: int, new: BasicBlock) -> None:
        raise AssertionError(f"invalid set_target({self}, {i})")

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.control_op(self)


class Goto(ControlOp):
    def __init__(self, label: BasicBlock, span: Span = no_span):
        super().__init__(span)
        self.label = label

    def targets(self) -> Sequence[BasicBlock]:
        return (self.label,)

    def set_target(self, i: int, new: BasicBlock) -> None:
        assert i == 0
        self.label = new

    def sources(self) -> list[Value]:
        return []

    def set_sources(self, new: list[Value]) -> None:
        assert not new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.goto(self)


class Branch(ControlOp):
    def __init__(
        self, value: Value, true: BasicBlock, false: BasicBlock, span: Span = no_span
    ):
        super().__init__(span)
        self.value = value
        self.true_label = true
        self.false_label = false

    def targets(self) -> Sequence[BasicBlock]:
        return (self.true_label, self.false_label)

    def set_target(self, i: int, new: BasicBlock) -> None:
        assert i == 0 or i == 1
        if i == 0:
            self.true_label = new
        else:
            self.false_label = new

    def sources(self) -> list[Value]:
        return [self.value]

    def set_sources(self, new: list[Value]) -> None:
        (self.value,) = new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.branch(self)


class Return(ControlOp):
    def __init__(self, value: Value | None = None, span: Span = no_span):
        super().__init__(span)
        self.value = value

    def sources(self) -> list[Value]:
        return [] if self.value is None else [self.value]

    def set_sources(self, new: list[Value]) -> None:
        if self.value is None:
            assert not new
        else:
            (self.value,) = new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.visit_return(self)


class Unreachable(ControlOp):
    def sources(self) -> list[Value]:
        return []

    def set_sources(self, new: list[Value]) -> None:
        assert not new

    def accept(self, visitor: OpVisitor[T]) -> T:
        return visitor.unreachable(self)


class Function(Value):
    def __init__(
        self,
        name: str,
        args: list[Argument],
        blocks: list[BasicBlock] | None = None,
        return_type: Type = void_type,
        var_arg: bool = False,
        span: Span = no_span,
        prefix: Sequence[str] = (),
        suffix: Sequence[str] = (),
        attr_group: AttributeGroup | None = None,
    ):
        self.name = name
        self.args = args
        self.blocks = [] if blocks is None else blocks
        self.return_type = return_type
        self.var_arg = var_arg
        self.span = span
        # Words between define/declare and the return type, and after the
        # argument list, kept verbatim for printing.
        self.prefix = list(prefix)
        self.suffix = list(suffix)
        self.attr_group = attr_group
        self.type = ptr_type

    @property
    def is_declaration(self) -> bool:
        return not self.blocks

    @property
    def entry(self) -> BasicBlock:
        assert self.blocks, f"function @{self.name} has no body"
        return self.blocks[0]

    @property
    def function_type(self) -> FunctionType:
        return FunctionType(
            self.return_type, [arg.type for arg in self.args], self.var_arg
        )

    def __repr__(self):
        return f"<Function {self.name!r}>"


@dataclass(eq=False)
class AttributeGroup:
    """A numbered attribute set shared by functions and call sites."""

    number: int
    attributes: list[str] = field(default_factory=list)
    defined: bool = False

    @property
    def function_attributes(self) -> list[str]:
        # String attributes such as "frame-pointer"="all" are not listed in
        # the comment printed above a function.
        return [attr for attr in self.attributes if not attr.startswith('"')]

    def __str__(self) -> str:
        return f"#{self.number}"


@dataclass(eq=False)
class Module:
    globals: list[GlobalVariable] = field(default_factory=list)
    functions: list[Function] = field(default_factory=list)
    attribute_groups: dict[int, AttributeGroup] = field(default_factory=dict)
    module_id: str | None = None
    source_filename: str | None = None
    datalayout: str | None = None
    triple: str | None = None

    def get_function(self, name: str) -> Function | None:
        for fn in self.functions:
            if fn.name == name:
                return fn
        return None

    def get_global(self, name: str) -> GlobalVariable | None:
        for var in self.globals:
            if var.name == name:
                return var
        return None

    @property
    def defined_functions(self) -> list[Function]:
        return [fn for fn in self.functions if not fn.is_declaration]


@trait
class OpVisitor(Generic[T]):
    def op(self, op: Op) -> T:  # type: ignore
        pass

    def alloca(self, op: Alloca) -> T:
        return self.op(op)

    def load(self, op: Load) -> T:
        return self.op(op)

    def store(self, op: Store) -> T:
        return self.op(op)

    def binary(self, op: Binary) -> T:
        return self.op(op)

    def comparison(self, op: Comparison) -> T:
        return self.op(op)

    def cast(self, op: Cast) -> T:
        return self.op(op)

    def get_element_ptr(self, op: GetElementPtr) -> T:
        return self.op(op)

    def call(self, op: Call) -> T:
        return self.op(op)

    def control_op(self, op: ControlOp) -> T:
        return self.op(op)

    def goto(self, op: Goto) -> T:
        return self.control_op(op)

    def branch(self, op: Branch) -> T:
        return self.control_op(op)

    def visit_return(self, op: Return) -> T:
        return self.control_op(op)

    def unreachable(self, op: Unreachable) -> T:
        return self.control_op(op)
