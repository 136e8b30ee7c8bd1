import llvmlite

llvmlite.ir_layer_typed_pointers_enabled = False

from copyprop.codegen import emit
from copyprop.codegen.generator import generate_llvm_ir
from copyprop.ir.nodes import Module


def emit_files(
    module: Module,
    llvm_ir_path: str | None = None,
    llvm_bc_path: str | None = None,
    object_path: str | None = None,
    asm_path: str | None = None,
    opt: int = 0,
):
    tm = emit.initialize_llvm(opt)
    ir_module = generate_llvm_ir(module)
    ll_module = emit.optimize(ir_module, tm, opt)
    emit.emit(ll_module, tm, llvm_ir_path, llvm_bc_path, object_path, asm_path)


def compile_jit(module: Module, opt: int = 0):
    """Compile module in-process and return the MCJIT engine."""
    tm = emit.initialize_llvm(opt, jit=True)
    ll_module = emit.optimize(generate_llvm_ir(module), tm, opt)
    return emit.jit(ll_module, tm)
