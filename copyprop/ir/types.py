from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Type:
    def __str__(self) -> str:
        raise NotImplementedError


@dataclass
class VoidType(Type):
    def __str__(self) -> str:
        return "void"


void_type = VoidType()


@dataclass
class IntType(Type):
    bits: int

    def __str__(self) -> str:
        return f"i{self.bits}"


bool_type = IntType(1)
i8_type = IntType(8)
i32_type = IntType(32)
i64_type = IntType(64)


@dataclass
class PointerType(Type):
    """Opaque pointer; the pointee type lives on the op that uses it."""

    def __str__(self) -> str:
        return "ptr"


ptr_type = PointerType()


@dataclass
class ArrayType(Type):
    type: Type
    size: int

    def __str__(self) -> str:
        return f"[{self.size} x {self.type}]"


@dataclass
class FunctionType(Type):
    return_type: Type
    args: list[Type]
    var_arg: bool = False

    def __str__(self) -> str:
        args = [str(arg) for arg in self.args]
        if self.var_arg:
            args.append("...")
        return f"{self.return_type} ({', '.join(args)})"
