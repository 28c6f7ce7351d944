import os, sys
import pytest

ROOT = os.path.dirname(os.path.dirname(__file__))
sys.path.insert(0, ROOT)

import minijava as mj

def src_of(code: str) -> mj.Source:
    return mj.Source.from_text(code, "<test>")

def parse(code: str) -> mj.Program:
    return mj.parse_source(src_of(code))

def resolve(code: str, fail_fast: bool = False):
    """Parse + identification → (prog, errors)"""
    src = src_of(code)
    prog = mj.parse_source(src)
    es = mj.ErrorSink(src, fail_fast)
    mj.Resolver(prog, es).run()
    return prog, es.errors

def check(code: str):
    """Parse + identification + type checking → (prog, errors)"""
    src = src_of(code)
    prog = mj.parse_source(src)
    es = mj.ErrorSink(src)
    mj.Resolver(prog, es).run()
    assert es.ok(), f"identification errors: {[d.msg for d in es.errors]}"
    mj.TypeChecker(prog, es).run()
    return prog, es.errors

def generate(code: str):
    """Whole pipeline → (prog, object code)"""
    result = mj.compile_source(code, "<test>")
    assert result.ok, f"errors: {[d.msg for d in result.es.errors]}"
    return result.ast, result.object_code

def with_main(members: str, *classes: str) -> str:
    # wraps member declarations into a class with an empty main
    body = "class Main { public static void main(String[] args) { } " + members + " }"
    return "\n".join([body, *classes])

def messages(errors) -> list:
    return [d.msg for d in errors]

def has_error(errors, fragment: str) -> bool:
    return any(fragment in d.msg for d in errors)

def prims(obj, prim) -> list:
    return [addr for addr, ins in enumerate(obj.code)
            if ins.op is mj.Op.CALL and ins.r is mj.Reg.PB and ins.d == prim]

def find_method(prog, class_name: str, name: str) -> mj.MethodDecl:
    cd = next(c for c in prog.classes if c.name == class_name)
    return next(m for m in cd.methods if m.name == name)

def find_field(prog, class_name: str, name: str) -> mj.FieldDecl:
    cd = next(c for c in prog.classes if c.name == class_name)
    return next(f for f in cd.fields if f.name == name)
