"""
Tests for the gocover command line.
"""

import subprocess
from pathlib import Path

import pytest

import gocover

TESTDATA = Path(__file__).parent / "testdata"
PROFILE = str(TESTDATA / "coverage.out")


@pytest.fixture(autouse=True)
def offline(monkeypatch):
    """No go toolchain: sources resolve into testdata."""
    monkeypatch.setattr(gocover, "find_go", lambda: None)
    monkeypatch.setattr(gocover, "find_file", lambda ref, go: str(TESTDATA / Path(ref).name))


def run_cli(*argv):
    return gocover.main(["--coverprofile", PROFILE, "--no-run-tests", *argv])


class TestModes:

    def test_report(self, capsys):
        assert run_cli() == 0
        out = capsys.readouterr().out
        assert "foo.go:5:" in out
        assert "Total covered: 87.50%" in out

    def test_file_flag(self, capsys):
        assert run_cli("--file", "foo.go") == 0
        assert "fmt.Println(n)" in capsys.readouterr().out

    def test_func_flag(self, capsys):
        assert run_cli("--func", "Baz") == 0
        out = capsys.readouterr().out
        assert "return true" in out
        assert "fmt.Println" not in out

    def test_positional_function(self, capsys):
        assert run_cli("bar") == 0
        assert 'return "bar"' in capsys.readouterr().out

    def test_unknown_function(self, capsys):
        assert run_cli("nope") == 1
        out = capsys.readouterr().out
        assert out.strip() == "could not find function nope"

    def test_unknown_file(self, capsys):
        assert run_cli("--file", "other.go") == 1
        assert "no coverage data" in capsys.readouterr().err

    def test_legend(self, capsys):
        assert gocover.main(["--legend"]) == 0
        assert len(capsys.readouterr().out.splitlines()) == 26


class TestTarget:

    def test_existing_go_file_is_file_mode(self):
        args = gocover.build_parser().parse_args([str(TESTDATA / "foo.go")])
        gocover.apply_target(args)
        assert args.file == str(TESTDATA / "foo.go")
        assert args.func == ""

    def test_missing_go_file_is_function_mode(self):
        args = gocover.build_parser().parse_args(["missing.go"])
        gocover.apply_target(args)
        assert args.func == "missing.go"


class TestErrors:

    def test_inconsistent_profile(self, tmp_path, capsys):
        profile = tmp_path / "c.out"
        profile.write_text("mode: count\nexample.com/foo/foo.go:90.1,91.2 1 1\n")
        assert gocover.main(["--coverprofile", str(profile), "--no-run-tests", "--file", "foo.go"]) == 2
        err = capsys.readouterr().err
        assert "Internal error" in err
        assert "90.1" in err

    def test_malformed_profile(self, tmp_path, capsys):
        profile = tmp_path / "c.out"
        profile.write_text("not a profile\n")
        assert gocover.main(["--coverprofile", str(profile), "--no-run-tests"]) == 1
        assert "bad mode line" in capsys.readouterr().err

    def test_non_utf8_profile(self, tmp_path, capsys):
        profile = tmp_path / "c.out"
        profile.write_bytes(b"mode: set\n\xff\xfe\n")
        assert gocover.main(["--coverprofile", str(profile), "--no-run-tests"]) == 1
        assert "Error:" in capsys.readouterr().err

    @pytest.mark.parametrize("flag", ["--low-color", "--high-color"])
    def test_bad_color(self, flag, capsys):
        assert gocover.main(["--legend", flag, "notacolor"]) == 1
        captured = capsys.readouterr()
        assert "Error:" in captured.err
        assert captured.out == ""

    def test_missing_go_when_running_tests(self, capsys):
        assert gocover.main(["--coverprofile", PROFILE]) == 1
        assert "go executable not found" in capsys.readouterr().err

    def test_failing_tests(self, monkeypatch, capsys):
        monkeypatch.setattr(gocover, "find_go", lambda: "go")
        monkeypatch.setattr(
            gocover, "run_go_tests",
            lambda go, path: subprocess.CompletedProcess(["go"], 1, "--- FAIL: TestFoo", ""),
        )
        assert gocover.main([]) == 1
        err = capsys.readouterr().err
        assert "--- FAIL: TestFoo" in err


def test_temporary_profile_removed(monkeypatch, tmp_path):
    seen = []

    def fake_run(go, path):
        seen.append(Path(path))
        Path(path).write_text("mode: count\n")
        return subprocess.CompletedProcess(["go"], 0, "", "")

    monkeypatch.setattr(gocover, "find_go", lambda: "go")
    monkeypatch.setattr(gocover, "run_go_tests", fake_run)
    assert gocover.main([]) == 0
    assert seen and not seen[0].exists()
