"""
Module for lowering optimized IR to LLVM artifacts.
This module verifies the generated LLVM module and writes it out as textual
IR, bitcode, object code or assembly, or loads it into an in-process JIT.
"""

import llvmlite.binding as llvm
import llvmlite.ir as llir


def initialize_llvm(opt: int = 0, jit: bool = False) -> llvm.TargetMachine:
    """Initialize LLVM components needed for code generation."""
    llvm.initialize_all_targets()
    llvm.initialize_native_target()
    llvm.initialize_native_asmprinter()
    llvm.initialize_native_asmparser()
    target = llvm.Target.from_default_triple()
    return target.create_target_machine(
        opt=opt, codemodel="jitdefault" if jit else "default", jit=jit
    )


def optimize(ir_module: llir.Module, tm: llvm.TargetMachine, opt: int = 0):
    ir_module.triple = tm.triple
    ir_module.data_layout = str(tm.target_data)
    ll_module = llvm.parse_assembly(str(ir_module))
    ll_module.verify()
    if opt > 0:
        pb = llvm.create_pass_builder(tm, llvm.PipelineTuningOptions(opt))
        pb.getModulePassManager().run(ll_module, pb)
    return ll_module


def jit(ll_module: llvm.ModuleRef, tm: llvm.TargetMachine) -> llvm.ExecutionEngine:
    """Load ll_module into an MCJIT engine; look functions up with get_function_address."""
    engine = llvm.create_mcjit_compiler(ll_module, tm)
    engine.finalize_object()
    engine.run_static_constructors()
    return engine


def emit_object(ll_module: llvm.ModuleRef, tm: llvm.TargetMachine, path: str):
    with open(path, "wb") as f:
        f.write(tm.emit_object(ll_module))


def emit_asm(ll_module: llvm.ModuleRef, tm: llvm.TargetMachine, path: str):
    with open(path, "w") as f:
        f.write(tm.emit_assembly(ll_module))


def emit_ir(ll_module: llvm.ModuleRef, path: str):
    with open(path, "w") as f:
        f.write(str(ll_module))


def emit_bc(ll_module: llvm.ModuleRef, path: str):
    with open(path, "wb") as f:
        f.write(ll_module.as_bitcode())


def emit(
    ll_module: llvm.ModuleRef,
    tm: llvm.TargetMachine,
    llvm_ir_path: str | None = None,
    llvm_bc_path: str | None = None,
    object_path: str | None = None,
    asm_path: str | None = None,
):
    if llvm_ir_path is not None:
        emit_ir(ll_module, llvm_ir_path)
    if llvm_bc_path is not None:
        emit_bc(ll_module, llvm_bc_path)
    if object_path is not None:
        emit_object(ll_module, tm, object_path)
    if asm_path is not None:
        emit_asm(ll_module, tm, asm_path)
