from analyzer.parser import parse_source
from sandbox.bindings import collect_tracked_names
from sandbox.generator import prepare_user_source


def test_module_level_reads_and_writes():
    output = prepare_user_source("total = 0\ntotal += 5\ndel total\n")
    assert output.splitlines() == [
        "__sandbox_env__['total'] = 0",
        "__sandbox_env__['total'] += 5",
        "del __sandbox_env__['total']",
    ]


def test_function_reads_module_variable():
    output = prepare_user_source("total = 0\ndef add(n):\n    return total + n\n")
    assert "return __sandbox_env__['total'] + n" in output


def test_function_locals_are_not_tracked():
    output = prepare_user_source("x = 1\ndef f():\n    x = 2\n    return x\n")
    assert "    x = 2" in output
    assert "    return x" in output


def test_global_declaration_is_routed_and_dropped():
    output = prepare_user_source("count = 0\ndef bump():\n    global count\n    count += 1\n")
    assert "global" not in output
    assert "__sandbox_env__['count'] += 1" in output


def test_closure_variable_is_not_tracked():
    code = """
n = 1
def outer():
    n = 2
    def inner():
        return n
    return inner()
"""
    output = prepare_user_source(code)
    assert "        return n" in output


def test_native_bindings_are_not_tracked():
    code = """
import math
def area(r):
    return math.pi * r
class Shape:
    sides = 0
try:
    pass
except ValueError as err:
    pass
radius = area(2)
"""
    assert collect_tracked_names(parse_source(code)) == {"radius"}
    output = prepare_user_source(code)
    assert "__sandbox_env__['radius'] = area(2)" in output
    assert "    sides = 0" in output


def test_comprehension_targets_stay_local():
    output = prepare_user_source("xs = [1, 2]\nys = [x * 2 for x in xs]\n")
    assert "__sandbox_env__['ys'] = [x * 2 for x in __sandbox_env__['xs']]" in output


def test_unpacking_and_loop_targets():
    output = prepare_user_source("a, *rest = [1, 2, 3]\nfor i in rest:\n    a = i\n")
    assert "__sandbox_env__['a'], *__sandbox_env__['rest'] = [1, 2, 3]" in output
    assert "for __sandbox_env__['i'] in __sandbox_env__['rest']:" in output


def test_annotated_assignment_becomes_non_simple():
    output = prepare_user_source("size: int = 3\n")
    assert output == "__sandbox_env__['size']: int = 3"


def test_class_body_sees_module_variable():
    output = prepare_user_source("base = 1\nclass C:\n    value = base + 1\n")
    assert "    value = __sandbox_env__['base'] + 1" in output


def test_class_body_reassigning_module_variable_reads_class_first():
    output = prepare_user_source("x = 1\nclass C:\n    x = x + 1\n    x += 1\n")
    assert output.splitlines()[1:] == [
        "class C:",
        "    x = __sandbox_env__.lookup('x', __sandbox_class_scope__()) + 1",
        "    x = __sandbox_env__.lookup('x', __sandbox_class_scope__())",
        "    x += 1",
    ]


def test_global_bound_by_walrus_stays_plain_global():
    code = """
x = 0
def f():
    global x
    if (x := 5):
        return x
r = f()
"""
    assert collect_tracked_names(parse_source(code)) == {"r"}
    output = prepare_user_source(code)
    assert "    global x" in output
    assert "x = 0" in output.splitlines()
    assert "        return x" in output


def test_global_bound_by_import_stays_plain_global():
    code = "def f():\n    global m\n    import math as m\n    return m.pi\nr = f()\n"
    assert collect_tracked_names(parse_source(code)) == {"r"}
    assert "    global m" in prepare_user_source(code)


def test_global_bound_by_assignment_is_still_tracked():
    code = "def f():\n    global total\n    total = 3\nf()\n"
    assert collect_tracked_names(parse_source(code)) == {"total"}
