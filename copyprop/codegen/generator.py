import llvmlite.ir as llir

from copyprop.ir.nodes import (
    Alloca,
    Argument,
    BasicBlock,
    Binary,
    BinaryOp,
    Branch,
    Call,
    Cast,
    CastOp,
    Comparison,
    ComparisonOp,
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
from copyprop.ir.types import (
    ArrayType,
    FunctionType,
    IntType,
    PointerType,
    Type,
    VoidType,
)

binary_methods = {
    BinaryOp.ADD: "add",
    BinaryOp.SUB: "sub",
    BinaryOp.MUL: "mul",
    BinaryOp.SDIV: "sdiv",
    BinaryOp.UDIV: "udiv",
    BinaryOp.SREM: "srem",
    BinaryOp.UREM: "urem",
    BinaryOp.SHL: "shl",
    BinaryOp.LSHR: "lshr",
    BinaryOp.ASHR: "ashr",
    BinaryOp.AND: "and_",
    BinaryOp.OR: "or_",
    BinaryOp.XOR: "xor",
}

signed_comparisons = {
    ComparisonOp.EQ: "==",
    ComparisonOp.NE: "!=",
    ComparisonOp.SLT: "<",
    ComparisonOp.SLE: "<=",
    ComparisonOp.SGT: ">",
    ComparisonOp.SGE: ">=",
}

unsigned_comparisons = {
    ComparisonOp.ULT: "<",
    ComparisonOp.ULE: "<=",
    ComparisonOp.UGT: ">",
    ComparisonOp.UGE: ">=",
}


class LLVMGenerator(OpVisitor[llir.Value]):
    def __init__(self, module: llir.Module) -> None:
        self.block_map: dict[BasicBlock, llir.Block] = {}
        self.value_map: dict[Value, llir.Value] = {}
        self.module = module
        self.builder = llir.IRBuilder()
        self.funcs: dict[Function, llir.Function] = {}
        self.globals: dict[GlobalVariable, llir.GlobalVariable] = {}

    def type(self, type: Type) -> llir.Type:
        match type:
            case VoidType():
                return llir.VoidType()
            case IntType():
                return llir.IntType(type.bits)
            case PointerType():
                return llir.PointerType()
            case ArrayType():
                return llir.ArrayType(self.type(type.type), type.size)
            case FunctionType():
                return llir.FunctionType(
                    self.type(type.return_type),
                    [self.type(arg) for arg in type.args],
                    var_arg=type.var_arg,
                )
            case _:
                raise Exception("unknown type")

    def constant(self, value: Value) -> llir.Constant:
        ll_type = self.type(value.type)
        match value:
            case Integer():
                return llir.Constant(ll_type, value.value)
            case CString():
                return llir.Constant(ll_type, bytearray(value.value))
            case ZeroInitializer():
                return llir.Constant(ll_type, None)
            case Undef():
                return llir.Constant(ll_type, llir.Undefined)
            case _:
                raise Exception("unknown constant")

    def create_global(self, var: GlobalVariable) -> None:
        ll_var = llir.GlobalVariable(self.module, self.type(var.value_type), var.name)
        if var.initializer is not None:
            ll_var.initializer = self.constant(var.initializer)
        ll_var.global_constant = var.constant
        if var.linkage:
            ll_var.linkage = var.linkage
        ll_var.unnamed_addr = var.unnamed_addr
        if var.align is not None:
            ll_var.align = var.align
        self.globals[var] = ll_var

    def create(self, func: Function) -> None:
        ll_func = llir.Function(
            self.module, self.type(func.function_type), func.name
        )
        for arg, ll_arg in zip(func.args, ll_func.args):
            if arg.name:
                ll_arg.name = arg.name
        self.funcs[func] = ll_func

    def generate(self, func: Function) -> None:
        self.block_map.clear()
        self.value_map.clear()
        ll_func = self.funcs[func]
        for block in func.blocks:
            self.block_map[block] = ll_func.append_basic_block(block.label)
        for arg, ll_arg in zip(func.args, ll_func.args):
            self.value_map[arg] = ll_arg

        for block, ll_block in self.block_map.items():
            self.builder.position_at_end(ll_block)
            for op in block.ops:
                self.value_map[op] = op.accept(self)

    def block(self, block: BasicBlock) -> llir.Block:
        return self.block_map[block]

    def value(self, value: Value) -> llir.Value:
        if isinstance(value, (Op, Argument)):
            return self.value_map[value]
        if isinstance(value, GlobalVariable):
            return self.globals[value]
        if isinstance(value, Function):
            return self.funcs[value]
        return self.constant(value)

    def alloca(self, op: Alloca) -> llir.Value:
        return self.builder.alloca(self.type(op.allocated_type), name=op.name)

    def load(self, op: Load) -> llir.Value:
        return self.builder.load(
            self.value(op.src), name=op.name, align=op.align, typ=self.type(op.type)
        )

    def store(self, op: Store) -> llir.Value:
        return self.builder.store(
            self.value(op.src), self.value(op.dest), align=op.align
        )

    def binary(self, op: Binary) -> llir.Value:
        method = getattr(self.builder, binary_methods[op.op])
        return method(
            self.value(op.left), self.value(op.right), name=op.name, flags=op.flags
        )

    def comparison(self, op: Comparison) -> llir.Value:
        left = self.value(op.left)
        right = self.value(op.right)
        if op.op in signed_comparisons:
            return self.builder.icmp_signed(
                signed_comparisons[op.op], left, right, name=op.name
            )
        return self.builder.icmp_unsigned(
            unsigned_comparisons[op.op], left, right, name=op.name
        )

    def cast(self, op: Cast) -> llir.Value:
        value = self.value(op.value)
        match op.op:
            case CastOp.SEXT:
                return self.builder.sext(value, self.type(op.type), name=op.name)
            case CastOp.ZEXT:
                return self.builder.zext(value, self.type(op.type), name=op.name)
            case CastOp.TRUNC:
                return self.builder.trunc(value, self.type(op.type), name=op.name)
        raise Exception("unknown cast op")

    def get_element_ptr(self, op: GetElementPtr) -> llir.Value:
        ptr = self.value(op.ptr)
        indices = [self.value(index) for index in op.indices]
        source_etype = self.type(op.source_type)
        if not ptr.type.is_opaque and ptr.type.pointee == source_etype:
            # llvmlite derives the element pointer type from a typed pointer.
            return self.builder.gep(ptr, indices, inbounds=op.inbounds, name=op.name)
        gep = self.builder.gep(
            ptr,
            indices,
            inbounds=op.inbounds,
            name=op.name,
            source_etype=source_etype,
        )
        # With source_etype llvmlite keeps the type of ptr, which is wrong
        # when ptr is typed; the result points into source_etype.
        gep.type = llir.PointerType()
        return gep

    def call(self, op: Call) -> llir.Value:
        return self.builder.call(
            self.funcs[op.fn], [self.value(arg) for arg in op.args], name=op.name
        )

    def goto(self, op: Goto) -> llir.Value:
        return self.builder.branch(self.block(op.label))

    def branch(self, op: Branch) -> llir.Value:
        return self.builder.cbranch(
            self.value(op.value), self.block(op.true_label), self.block(op.false_label)
        )

    def visit_return(self, op: Return) -> llir.Value:
        if op.value is None:
            return self.builder.ret_void()
        return self.builder.ret(self.value(op.value))

    def unreachable(self, op: Unreachable) -> llir.Value:
        return self.builder.unreachable()

    def op(self, op: Op) -> llir.Value:
        raise Exception("unknown op")


def generate_llvm_ir(module: Module) -> llir.Module:
    ll_module = llir.Module()
    generator = LLVMGenerator(ll_module)
    for var in module.globals:
        generator.create_global(var)
    for func in module.functions:
        generator.create(func)
    for func in module.defined_functions:
        generator.generate(func)
    return ll_module
