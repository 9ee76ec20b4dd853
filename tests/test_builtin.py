"""In-process builtins: cd, pwd, exit/quit and NAME=VALUE assignment."""

import os
from pathlib import Path

import pytest  # type: ignore

import builtin
from nodes import EXIT_FAILURE, EXIT_SUCCESS, SHELL_EXIT, IOFlags, LeafCommand


def _ident(fd):
    st = os.fstat(fd)
    return st.st_dev, st.st_ino


class TestCd:

    def test_relative(self, session, tmp_path):
        (tmp_path / "a" / "b").mkdir(parents=True)
        cwd = os.getcwd()
        rc = builtin.builtin_cd(LeafCommand("cd", ["a/b"]), session)
        assert rc == EXIT_SUCCESS
        assert os.getcwd() == cwd + "/a/b"

    def test_relative_path_is_concatenated(self, session, tmp_path):
        (tmp_path / "sub").mkdir()
        cwd = os.getcwd()
        builtin.builtin_cd(LeafCommand("cd", ["sub"]), session)
        assert session.env["PWD"] == cwd + "/sub"
        assert session.env["OLDPWD"] == cwd

    def test_absolute(self, session, tmp_path):
        target = tmp_path / "abs"
        target.mkdir()
        rc = builtin.builtin_cd(LeafCommand("cd", [str(target)]), session)
        assert rc == EXIT_SUCCESS
        assert Path(os.getcwd()) == target.resolve()
        assert session.env["PWD"] == str(target)

    def test_no_argument_is_noop(self, session, tmp_path):
        before = os.getcwd()
        rc = builtin.builtin_cd(LeafCommand("cd"), session)
        assert rc == EXIT_SUCCESS
        assert os.getcwd() == before
        assert "PWD" not in session.env

    def test_missing_directory_fails(self, session, capfd):
        before = os.getcwd()
        rc = builtin.builtin_cd(LeafCommand("cd", ["nope"]), session)
        assert rc == EXIT_FAILURE
        assert os.getcwd() == before
        assert "cd: nope" in capfd.readouterr().err

    def test_path_too_long_fails(self, session):
        rc = builtin.builtin_cd(LeafCommand("cd", ["x" * builtin.PATH_MAX]), session)
        assert rc == EXIT_FAILURE

    def test_error_goes_to_redirected_stderr(self, session, tmp_path):
        rc = builtin.builtin_cd(LeafCommand("cd", ["nope"], stderr="err.txt"), session)
        assert rc == EXIT_FAILURE
        assert "nope" in (tmp_path / "err.txt").read_text()

    def test_std_fds_restored(self, session, tmp_path):
        (tmp_path / "d").mkdir()
        before = {fd: _ident(fd) for fd in (0, 1, 2)}
        builtin.builtin_cd(LeafCommand("cd", ["d"], stdout="o.txt", stderr="e.txt"), session)
        assert {fd: _ident(fd) for fd in (0, 1, 2)} == before
        # targets were created relative to the directory cd started from
        assert (tmp_path / "o.txt").exists()

    def test_bad_redirection_fails_without_aborting(self, session):
        before = os.getcwd()
        rc = builtin.builtin_cd(LeafCommand("cd", ["."], stdin="missing.txt"), session)
        assert rc == EXIT_FAILURE
        assert os.getcwd() == before


class TestPwd:

    def test_writes_cwd_to_redirected_stdout(self, session, tmp_path):
        rc = builtin.builtin_pwd(LeafCommand("pwd", stdout="p.txt"), session)
        assert rc == EXIT_SUCCESS
        assert (tmp_path / "p.txt").read_text() == os.getcwd() + "\n"

    def test_writes_to_stdout(self, session, capfd):
        assert builtin.builtin_pwd(LeafCommand("pwd"), session) == EXIT_SUCCESS
        assert capfd.readouterr().out == os.getcwd() + "\n"

    def test_append(self, session, tmp_path):
        leaf = LeafCommand("pwd", stdout="p.txt", io_flags=IOFlags.OUT_APPEND)
        builtin.builtin_pwd(leaf, session)
        builtin.builtin_pwd(leaf, session)
        assert (tmp_path / "p.txt").read_text() == (os.getcwd() + "\n") * 2


class TestExit:

    @pytest.mark.parametrize("verb", ["exit", "quit"])
    def test_returns_sentinel(self, session, verb):
        assert builtin.lookup(verb)(LeafCommand(verb), session) == SHELL_EXIT

    def test_redirections_ignored(self, session, tmp_path):
        rc = builtin.builtin_exit(LeafCommand("exit", stdout="never.txt"), session)
        assert rc == SHELL_EXIT
        assert not (tmp_path / "never.txt").exists()


class TestAssignment:

    def test_installs_into_session(self, session):
        rc = builtin.assign(LeafCommand("GREETING=hello"), session)
        assert rc == EXIT_SUCCESS
        assert session.env["GREETING"] == "hello"
        assert "GREETING" not in os.environ

    def test_value_may_contain_equals(self, session):
        builtin.assign(LeafCommand("OPTS=a=b"), session)
        assert session.env["OPTS"] == "a=b"

    def test_empty_value(self, session):
        assert builtin.assign(LeafCommand("EMPTY="), session) == EXIT_SUCCESS
        assert session.env["EMPTY"] == ""

    def test_empty_name_fails(self, session):
        assert builtin.assign(LeafCommand("=oops"), session) == EXIT_FAILURE


class TestLookup:

    def test_named_builtins(self):
        assert builtin.lookup("cd") is builtin.builtin_cd
        assert builtin.lookup("pwd") is builtin.builtin_pwd
        assert builtin.lookup("exit") is builtin.lookup("quit")

    def test_assignment_shape(self):
        assert builtin.lookup("A=1") is builtin.assign
        assert builtin.lookup("./prog=x") is builtin.assign

    def test_external(self):
        assert builtin.lookup("ls") is None
        assert builtin.lookup("cat") is None
