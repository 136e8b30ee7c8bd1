from pathlib import Path

import pytest

from copyprop.ir.nodes import Function, Module
from copyprop.parser import parse

DATA = Path(__file__).parent / "data"


def parse_function(text: str) -> Function:
    module = parse(text)
    fns = module.defined_functions
    assert len(fns) == 1, "expected exactly one definition"
    return fns[0]


@pytest.fixture
def ex5_path() -> Path:
    return DATA / "ex5.ll"


@pytest.fixture
def ex5(ex5_path: Path) -> Module:
    return parse(ex5_path.read_text())
