import pytest
import minijava as mj
from conftest import resolve, with_main, has_error, messages, find_method, find_field


def test_same_member_names_in_different_classes():
    prog, errors = resolve(with_main("", "class A { int x; void m() { } }",
                                     "class B { int x; void m() { } }"))
    assert errors == []


def test_duplicate_class():
    _, errors = resolve(with_main("", "class A { }", "class A { }"))
    assert has_error(errors, "duplicate declaration of class 'A'")


def test_predefined_class_cannot_be_redeclared():
    _, errors = resolve(with_main("", "class System { }"))
    assert has_error(errors, "duplicate declaration of class 'System'")


@pytest.mark.parametrize("members", [
    "int x; int x;",
    "int x; void x() { }",
    "void m() { } void m() { }",
])
def test_duplicate_members(members):
    _, errors = resolve(with_main(members))
    assert has_error(errors, "duplicate declaration of member")


def test_duplicate_parameter():
    _, errors = resolve(with_main("void m(int a, int a) { }"))
    assert has_error(errors, "duplicate declaration of 'a'")


@pytest.mark.parametrize("body", [
    "int a = 1;",                     # hides the parameter
    "int x = 1; { int x = 2; }",      # hides an outer local
    "while (true) { int a = 3; }",
])
def test_locals_cannot_hide_params_or_locals(body):
    _, errors = resolve(with_main("void m(int a) { " + body + " }"))
    assert has_error(errors, "hides a parameter or local variable")


def test_locals_may_shadow_fields_and_classes():
    prog, errors = resolve(with_main("int f; void m() { int f = 1; int Main = 2; f = Main; }"))
    assert errors == []
    body = find_method(prog, "Main", "m").body
    assert body[2].ref.decl is body[0].var
    assert body[2].value.ref.decl is body[1].var


def test_sibling_blocks_may_reuse_names():
    _, errors = resolve(with_main("void m() { { int x = 1; } { int x = 2; } }"))
    assert errors == []


def test_forward_reference_to_member():
    prog, errors = resolve(with_main("int get() { return value; } int value;"))
    assert errors == []
    ret = find_method(prog, "Main", "get").body[0]
    assert ret.expr.ref.decl is find_field(prog, "Main", "value")


def test_undeclared_identifier():
    _, errors = resolve(with_main("void m() { x = 1; }"))
    assert has_error(errors, "undeclared identifier 'x'")


def test_undeclared_class_type():
    _, errors = resolve(with_main("Missing f;"))
    assert has_error(errors, "undeclared class 'Missing'")


def test_self_reference_in_initializer():
    _, errors = resolve(with_main("void m() { int x = x + 1; }"))
    assert has_error(errors, "cannot be used in its own initializer")


def test_private_method_called_from_other_class():
    _, errors = resolve(with_main("",
        "class A { private void secret() { } }",
        "class B { void m() { A a = new A(); a.secret(); } }"))
    assert has_error(errors, "'secret' is private to class 'A'")


def test_private_member_visible_in_own_class():
    _, errors = resolve(with_main("", "class A { private int x; void m(A other) { other.x = this.x; } }"))
    assert errors == []


def test_instance_member_from_static_method():
    _, errors = resolve(with_main("int x; static void s() { x = 1; }"))
    assert has_error(errors, "non-static member 'x' cannot be referenced from a static method")


def test_static_member_unqualified_from_instance_method():
    _, errors = resolve(with_main("static int count; void m() { count = 1; }"))
    assert has_error(errors, "static member 'count' must be qualified")


def test_static_member_through_class_name():
    prog, errors = resolve(with_main("void m() { A.count = A.make(); }",
                                     "class A { static int count; static int make() { return 1; } }"))
    assert errors == []
    stmt = find_method(prog, "Main", "m").body[0]
    assert stmt.ref.decl is find_field(prog, "A", "count")


def test_instance_member_through_class_name():
    _, errors = resolve(with_main("void m() { A.x = 1; }", "class A { int x; }"))
    assert has_error(errors, "non-static member 'x' cannot be accessed through class 'A'")


def test_this_in_static_method():
    _, errors = resolve(with_main("int x; static void s() { this.x = 1; }"))
    assert has_error(errors, "'this' cannot be used in a static method")


def test_this_binds_to_enclosing_class():
    prog, errors = resolve(with_main("", "class A { int x; void m() { this.x = 1; } }"))
    assert errors == []
    ref = find_method(prog, "A", "m").body[0].ref
    a = next(c for c in prog.classes if c.name == "A")
    assert ref.ref.decl is a


@pytest.mark.parametrize("branch", [
    "if (true) int y = 1;",
    "if (true) { } else int y = 1;",
    "while (true) int y = 1;",
])
def test_declaration_as_sole_branch(branch):
    _, errors = resolve(with_main("void m() { " + branch + " }"))
    assert has_error(errors, "cannot be the only statement of a branch")


def test_method_as_qualifier():
    _, errors = resolve(with_main("", "class A { int x; A self() { return this; } void m() { int y = self.x; } }"))
    assert has_error(errors, "method 'self' cannot be used as a qualifier")


def test_call_target_must_be_a_method():
    _, errors = resolve(with_main("int x; void m() { x(); }"))
    assert has_error(errors, "'x' is not a method")


def test_member_missing_from_class():
    _, errors = resolve(with_main("", "class A { }", "class B { void m(A a) { a.nope = 1; } }"))
    assert has_error(errors, "undeclared identifier 'nope' in class 'A'")


def test_array_length_binds_to_builtin():
    prog, errors = resolve(with_main("int m(int[] xs) { return xs.length; }"))
    assert errors == []
    ref = find_method(prog, "Main", "m").body[0].expr.ref
    assert ref.decl is prog.env.length


def test_println_binds_to_predefined():
    prog, errors = resolve("class Main { public static void main(String[] args) { System.out.println(1); } }")
    assert errors == []
    call = find_method(prog, "Main", "main").body[0]
    assert call.method_ref.decl is prog.env.println
    assert call.method_ref.ref.decl is prog.env.out


def test_user_method_named_println_is_ordinary():
    prog, errors = resolve(with_main("void println(int n) { } void m() { println(1); }"))
    assert errors == []
    call = find_method(prog, "Main", "m").body[0]
    assert call.method_ref.decl is find_method(prog, "Main", "println")


def test_errors_are_collected():
    _, errors = resolve(with_main("void m() { a = 1; b = 2; }"))
    assert messages(errors) == ["undeclared identifier 'a'", "undeclared identifier 'b'"]


def test_fail_fast_stops_at_first_error():
    with pytest.raises(mj.CompileAbort) as info:
        resolve(with_main("void m() { a = 1; b = 2; }"), fail_fast=True)
    assert info.value.diag.msg == "undeclared identifier 'a'"


def test_resolution_is_idempotent():
    code = with_main("int f; void m(int p) { int x = p; f = x; this.m(x); }", "class A { static int s; }")
    prog, errors = resolve(code)
    assert errors == []
    body = find_method(prog, "Main", "m").body
    before = [body[0].init.ref.decl, body[1].ref.decl, body[1].value.ref.decl, body[2].method_ref.decl]

    es = mj.ErrorSink()
    mj.Resolver(prog, es).run()
    assert es.ok()
    after = [body[0].init.ref.decl, body[1].ref.decl, body[1].value.ref.decl, body[2].method_ref.decl]
    assert all(a is b for a, b in zip(before, after))


def test_duplicate_member_notes_previous_declaration():
    code = with_main("int x;\n void x() { }")
    src = mj.Source.from_text(code, "<test>")
    prog = mj.parse_source(src)
    es = mj.ErrorSink(src)
    mj.Resolver(prog, es).run()
    [note] = es.notes
    assert note.msg == "previous declaration of 'x' is here"
    assert note.lexpos == find_field(prog, "Main", "x").pos
