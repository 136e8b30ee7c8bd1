"""Reading and printing the textual IR."""

import pytest

from copyprop.ir.nodes import (
    Alloca,
    Argument,
    BasicBlock,
    Call,
    Function,
    GetElementPtr,
    Load,
    Return,
    Store,
)
from copyprop.ir.printer import format_function, format_module
from copyprop.ir.types import ArrayType, IntType, i32_type, ptr_type, void_type
from copyprop.parser import IRParseError, parse, split_attributes
from tests.conftest import parse_function


def test_ex5_structure(ex5):
    assert [fn.name for fn in ex5.functions] == ["scale", "main", "printf"]
    assert [fn.name for fn in ex5.defined_functions] == ["scale", "main"]
    printf = ex5.get_function("printf")
    assert printf is not None and printf.is_declaration and printf.var_arg

    m = ex5.get_global("m")
    assert m is not None
    assert m.value_type == ArrayType(IntType(32), 6)
    assert m.align == 16
    string = ex5.get_global(".str")
    assert string is not None and string.constant
    assert string.initializer.value == b"%d %d %d\n\0"

    scale = ex5.get_function("scale")
    assert [block.label for block in scale.blocks] == [
        "entry",
        "if.then",
        "if.end",
        "for.cond",
        "for.body",
        "for.inc",
        "for.end",
        "return",
    ]


def test_operands_are_shared_objects(ex5):
    scale = ex5.get_function("scale")
    entry = scale.entry
    x_addr = entry.ops[1]
    assert isinstance(x_addr, Alloca) and x_addr.name == "x.addr"
    store = entry.ops[3]
    assert isinstance(store, Store)
    assert isinstance(store.src, Argument)
    assert store.src is scale.args[0]
    assert store.dest is x_addr
    load = entry.ops[4]
    assert isinstance(load, Load) and load.src is x_addr


def test_calls_resolve_functions(ex5):
    main = ex5.get_function("main")
    calls = [op for block in main.blocks for op in block.ops if isinstance(op, Call)]
    assert [call.fn.name for call in calls] == ["printf", "scale", "printf"]
    assert len(calls[0].args) == 4
    assert calls[1].fn is ex5.get_function("scale")


def test_gep_operands(ex5):
    main = ex5.get_function("main")
    geps = [
        op for block in main.blocks for op in block.ops if isinstance(op, GetElementPtr)
    ]
    assert all(gep.inbounds for gep in geps)
    assert all(gep.ptr is ex5.get_global("m") for gep in geps)


def test_round_trip(ex5):
    text = format_module(ex5)
    assert format_module(parse(text)) == text


def test_ex5_prints_back_unchanged(ex5_path):
    text = ex5_path.read_text()
    assert format_module(parse(text)) == text


def test_module_header_and_attributes(ex5):
    assert ex5.module_id == "ex5.c"
    assert ex5.source_filename == "ex5.c"
    assert ex5.triple == "x86_64-pc-linux-gnu"
    scale = ex5.get_function("scale")
    assert scale.prefix == ["dso_local"]
    assert scale.args[0].attrs == ["noundef"]
    assert scale.attr_group is ex5.attribute_groups[0]
    assert scale.attr_group.function_attributes == [
        "noinline",
        "nounwind",
        "optnone",
        "uwtable",
    ]
    printf = ex5.get_function("printf")
    assert printf.attr_group is ex5.attribute_groups[1]
    assert printf.attr_group.function_attributes == []
    assert ex5.get_global("m").qualifiers == ["dso_local"]


def test_function_header_lines(ex5):
    lines = format_function(ex5.get_function("scale")).splitlines()
    assert lines[:3] == [
        "; Function Attrs: noinline nounwind optnone uwtable",
        "define dso_local i32 @scale(i32 noundef %x) #0 {",
        "entry:",
    ]
    assert "for.cond:" + " " * 41 + "; preds = %for.inc, %if.end" in lines
    assert format_function(ex5.get_function("printf")) == (
        "declare i32 @printf(ptr noundef, ...) #1"
    )


def test_call_keeps_argument_attributes(ex5):
    main = ex5.get_function("main")
    calls = [op for block in main.blocks for op in block.ops if isinstance(op, Call)]
    assert calls[1].arg_attrs == [["noundef"]]
    assert "  %call3 = call i32 @scale(i32 noundef %10)" in format_function(main)


def test_split_attributes():
    assert split_attributes(
        ' nounwind memory(argmem: readwrite) "target-cpu"="x86 64" '
    ) == ["nounwind", "memory(argmem: readwrite)", '"target-cpu"="x86 64"']


def test_function_built_directly():
    a = Argument(i32_type, "a")
    f = Function("f", [a])
    g = Function("g", [], return_type=i32_type)
    assert f.is_declaration and f.blocks == []
    assert f.return_type == void_type and g.return_type == i32_type
    assert f.type == ptr_type
    f.blocks.append(BasicBlock("entry", [Return()]))
    assert g.blocks == []
    assert format_function(f) == "define void @f(i32 %a) {\nentry:\n  ret void\n}"


def test_printed_function():
    fn = parse_function(
        """
define i32 @f(i32 %a) {
  %1 = alloca i32, align 4
  store i32 %a, ptr %1, align 4
  %2 = load i32, ptr %1, align 4
  %3 = add nsw i32 %2, 1
  ret i32 %3
}
"""
    )
    assert format_function(fn) == (
        "define i32 @f(i32 %a) {\n"
        "  %1 = alloca i32, align 4\n"
        "  store i32 %a, ptr %1, align 4\n"
        "  %2 = load i32, ptr %1, align 4\n"
        "  %3 = add nsw i32 %2, 1\n"
        "  ret i32 %3\n"
        "}"
    )


def test_numbering_after_deletion():
    fn = parse_function(
        """
define i32 @f() {
entry:
  %0 = alloca i32
  %1 = load i32, ptr %0
  %2 = load i32, ptr %0
  ret i32 %2
}
"""
    )
    del fn.entry.ops[1]
    assert "  %1 = load i32, ptr %0\n  ret i32 %1" in format_function(fn)


def test_numbered_blocks():
    fn = parse_function(
        """
define void @f(i1 %c) {
  br i1 %c, label %1, label %2

1:
  br label %2

2:
  ret void
}
"""
    )
    assert len(fn.blocks) == 3
    assert fn.blocks[0].terminator.targets() == (fn.blocks[1], fn.blocks[2])
    text = format_function(fn)
    assert "\n1:" + " " * 48 + "; preds = %0\n" in text
    assert "\n2:" + " " * 48 + "; preds = %1, %0\n" in text


@pytest.mark.parametrize(
    "text, message",
    [
        ("define i32 @f() {\nentry:\n  ret i32 %x\n}", "undefined value %x"),
        ("define void @f() {\nentry:\n  br label %nowhere\n}", "undefined label"),
        ("define i32 @f() {\nentry:\n  %1 = alloca i32\n  ret i32 0\n}", "expected %0"),
        ("define void @f() {\nentry:\n  frobnicate\n}", "unknown instruction"),
        ("define void @f() {\nentry:\n  ret void\n  ret void\n}", "after terminator"),
        ("@g = global i32 0\n@g = global i32 1\n", "redefinition of @g"),
        ("define void @f() {\nentry:\n  call void @missing()\n  ret void\n}", "undefined global"),
        ("declare void @f() #3\n", "undefined attribute group #3"),
        ("attributes #0 = { nounwind }\nattributes #0 = { nounwind }\n", "redefinition of attribute group #0"),
    ],
)
def test_errors(text, message):
    with pytest.raises(IRParseError, match=message):
        parse(text)


def test_error_carries_position():
    with pytest.raises(IRParseError) as info:
        parse("define i32 @f() {\nentry:\n  ret i32 %x\n}")
    assert info.value.span is not None
    assert info.value.span.line == 3
    assert str(info.value).startswith("3:")
