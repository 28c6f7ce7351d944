import os
import pytest
import minijava as mj

GOOD = """
class Counter {
    private int count;

    public void add(int n) { count = count + n; }
    public int get() { return count; }
}

class Main {
    public static void main(String[] args) {
        Counter c = new Counter();
        int i = 0;
        while (i < 10) {
            c.add(i);
            i = i + 1;
        }
        if (c.get() > 40 && !(c.get() == 0)) System.out.println(c.get());
    }
}
"""


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_compile_source_ok():
    result = mj.compile_source(GOOD)
    assert result.ok and result.status == mj.EXIT_OK
    assert result.es.errors == []
    assert result.object_code.code[-1].op is mj.Op.RETURN


def test_compile_source_parse_failure():
    result = mj.compile_source("class Main { int x }")
    assert result.status == mj.EXIT_PARSE
    assert result.ast is None
    [diag] = result.es.errors
    assert diag.msg == "unexpected '}'"
    assert diag.line_col == (1, 20)


def test_compile_source_stops_after_identification():
    result = mj.compile_source("class Main { public static void main(String[] a) { x = true + 1; } }")
    assert result.status == mj.EXIT_SEMANTIC
    # the type error is never reported because checking did not run
    assert [d.msg for d in result.es.errors] == ["undeclared identifier 'x'"]


def test_compile_source_collects_type_errors():
    result = mj.compile_source(
        "class Main { public static void main(String[] a) { int x = true; boolean b = 1; } }")
    assert result.status == mj.EXIT_SEMANTIC
    assert len(result.es.errors) == 2
    assert result.object_code is None


def test_compile_source_fail_fast():
    result = mj.compile_source(
        "class Main { public static void main(String[] a) { int x = true; boolean b = 1; } }",
        fail_fast=True)
    assert result.status == mj.EXIT_SEMANTIC
    assert len(result.es.errors) == 1


def test_compile_file_writes_listing(tmp_path, capsys):
    path = write(tmp_path, "Counter.java", GOOD)
    assert mj.compile_file(path, use_color=False) == mj.EXIT_OK
    out = str(tmp_path / "Counter.mJAM.txt")
    assert os.path.exists(out)
    assert f"Wrote {out}" in capsys.readouterr().out
    with open(out, encoding="utf-8") as f:
        text = f.read()
    assert text.startswith("; static segment: 0 word(s)")
    assert "putintnl" in text


def test_compile_file_output_option(tmp_path):
    path = write(tmp_path, "Counter.java", GOOD)
    out = str(tmp_path / "custom.txt")
    assert mj.compile_file(path, output=out, use_color=False) == mj.EXIT_OK
    assert os.path.exists(out)


def test_compile_file_missing_input(tmp_path, capsys):
    rc = mj.compile_file(str(tmp_path / "nope.java"))
    assert rc == mj.EXIT_BAD_INPUT
    assert "cannot read" in capsys.readouterr().out


def test_compile_file_reports_diagnostics(tmp_path, capsys):
    path = write(tmp_path, "Bad.java",
                 "class Main {\n  public static void main(String[] a) {\n    int x = false;\n  }\n}\n")
    assert mj.compile_file(path, use_color=False) == mj.EXIT_SEMANTIC
    out = capsys.readouterr().out
    assert "error: cannot initialize 'x' of type int with a value of type boolean" in out
    assert "Bad.java:3:13" in out
    assert "    int x = false;" in out
    assert not os.path.exists(str(tmp_path / "Bad.mJAM.txt"))


def test_compile_file_parse_failure(tmp_path, capsys):
    path = write(tmp_path, "Bad.java", "class Main { void m() { return } }")
    assert mj.compile_file(path, use_color=False) == mj.EXIT_PARSE
    assert "parse failure" in capsys.readouterr().out


def test_diag_format_with_color_and_hint():
    src = mj.Source.from_text("class A { }", "a.java")
    text = mj.Diag("error", "boom", src, 6, "try again").format(use_color=True)
    assert "\033[31m" in text
    assert "help:" in text and "try again" in text
    plain = mj.Diag("error", "boom", src, 6).format(use_color=False)
    assert plain.splitlines()[0] == "error: boom"
    assert plain.splitlines()[1] == "--> a.java:1:7"


def test_diag_without_source():
    assert mj.Diag("error", "no main method found", None, 0).format(use_color=False) == \
        "error: no main method found"


@pytest.mark.parametrize("argv", [[], ["a.java", "b.java"], ["-o"], ["--bogus", "a.java"]])
def test_main_usage_errors(argv, capsys):
    assert mj.main(argv) == mj.EXIT_USAGE
    assert "error:" in capsys.readouterr().out


def test_main_compiles(tmp_path):
    path = write(tmp_path, "Counter.java", GOOD)
    out = str(tmp_path / "out.txt")
    assert mj.main([path, "-o", out, "--no-color", "--fail-fast"]) == mj.EXIT_OK
    assert os.path.exists(out)


def test_main_semantic_error(tmp_path):
    path = write(tmp_path, "Main.java", "class Main { }")
    assert mj.main([path, "--no-color"]) == mj.EXIT_SEMANTIC
