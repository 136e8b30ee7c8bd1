"""Lowering to LLVM through llvmlite and running the result in a JIT."""

import ctypes
import re

import pytest

from copyprop.codegen import compile_jit, emit, emit_files
from copyprop.codegen.generator import generate_llvm_ir
from copyprop.opt import optimize
from copyprop.parser import parse

KERNEL = """
@m = global [6 x i32] zeroinitializer, align 16

define void @fill() {
entry:
  %i = alloca i32, align 4
  store i32 0, ptr %i, align 4
  br label %cond

cond:
  %0 = load i32, ptr %i, align 4
  %cmp = icmp slt i32 %0, 6
  br i1 %cmp, label %body, label %end

body:
  %1 = load i32, ptr %i, align 4
  %2 = load i32, ptr %i, align 4
  %idxprom = sext i32 %2 to i64
  %arrayidx = getelementptr inbounds [6 x i32], ptr @m, i64 0, i64 %idxprom
  store i32 %1, ptr %arrayidx, align 4
  %3 = load i32, ptr %i, align 4
  %add = add nsw i32 %3, 1
  store i32 %add, ptr %i, align 4
  br label %cond

end:
  ret void
}

define i32 @scale(i32 %x) {
entry:
  %retval = alloca i32, align 4
  %x.addr = alloca i32, align 4
  %i = alloca i32, align 4
  store i32 %x, ptr %x.addr, align 4
  %0 = load i32, ptr %x.addr, align 4
  %cmp = icmp eq i32 %0, 0
  br i1 %cmp, label %if.then, label %if.end

if.then:
  store i32 0, ptr %retval, align 4
  br label %return

if.end:
  store i32 0, ptr %i, align 4
  br label %for.cond

for.cond:
  %1 = load i32, ptr %i, align 4
  %cmp1 = icmp slt i32 %1, 6
  br i1 %cmp1, label %for.body, label %for.end

for.body:
  %2 = load i32, ptr %x.addr, align 4
  %3 = load i32, ptr %i, align 4
  %idxprom = sext i32 %3 to i64
  %arrayidx = getelementptr inbounds [6 x i32], ptr @m, i64 0, i64 %idxprom
  %4 = load i32, ptr %arrayidx, align 4
  %mul = mul nsw i32 %4, %2
  store i32 %mul, ptr %arrayidx, align 4
  br label %for.inc

for.inc:
  %5 = load i32, ptr %i, align 4
  %add = add nsw i32 %5, 1
  store i32 %add, ptr %i, align 4
  br label %for.cond

for.end:
  store i32 1, ptr %retval, align 4
  br label %return

return:
  %6 = load i32, ptr %retval, align 4
  ret i32 %6
}
"""


def run_kernel(module, factor: int) -> tuple[int, list[int]]:
    engine = compile_jit(module)
    fill = ctypes.CFUNCTYPE(None)(engine.get_function_address("fill"))
    scale = ctypes.CFUNCTYPE(ctypes.c_int32, ctypes.c_int32)(
        engine.get_function_address("scale")
    )
    m = (ctypes.c_int32 * 6).from_address(engine.get_global_value_address("m"))
    fill()
    status = scale(factor)
    return status, list(m)


def test_ex5_verifies_before_and_after(ex5):
    tm = emit.initialize_llvm()
    emit.optimize(generate_llvm_ir(ex5), tm)
    optimize(ex5)
    ll_module = emit.optimize(generate_llvm_ir(ex5), tm)
    text = str(ll_module)
    assert "define i32 @scale(i32 %x)" in text
    assert "declare i32 @printf(ptr, ...)" in text


def test_generated_ir_shape(ex5):
    optimize(ex5)
    text = str(generate_llvm_ir(ex5))
    assert re.search(r'call i32 @"?scale"?\(i32 9\)', text)


@pytest.mark.parametrize("factor", [3, -2])
def test_jit_same_results_after_pass(factor):
    expected = run_kernel(parse(KERNEL), factor)
    assert expected == (1, [i * factor for i in range(6)])
    module = parse(KERNEL)
    optimize(module)
    assert run_kernel(module, factor) == expected


def test_jit_zero_factor_returns_early():
    module = parse(KERNEL)
    optimize(module)
    assert run_kernel(module, 0) == (0, [0, 1, 2, 3, 4, 5])


def test_emit_files(ex5, tmp_path):
    optimize(ex5)
    ll_path = tmp_path / "ex5.opt.ll"
    obj_path = tmp_path / "ex5.o"
    emit_files(ex5, llvm_ir_path=str(ll_path), object_path=str(obj_path))
    assert "define i32 @main()" in ll_path.read_text()
    assert obj_path.stat().st_size > 0


def test_global_array_element_store():
    module = parse(
        """
@m = global [6 x i32] zeroinitializer, align 16

define void @set() {
entry:
  %p = getelementptr inbounds [6 x i32], ptr @m, i64 0, i64 1
  store i32 1, ptr %p, align 4
  %q = getelementptr inbounds i32, ptr @m, i64 3
  store i32 7, ptr %q, align 4
  ret void
}
"""
    )
    text = str(generate_llvm_ir(module))
    assert "getelementptr inbounds i32, ptr @" in text
    engine = compile_jit(module)
    set_ = ctypes.CFUNCTYPE(None)(engine.get_function_address("set"))
    m = (ctypes.c_int32 * 6).from_address(engine.get_global_value_address("m"))
    set_()
    assert list(m) == [0, 1, 0, 7, 0, 0]
