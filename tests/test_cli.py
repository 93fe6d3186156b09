"""Tests for the command line wrapper around the core operations."""

import logging

import pytest

from treesnap import cli, config, data


@pytest.fixture(autouse=True)
def restore_logging():
    """Put back the root logger handlers replaced by setup_logging."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def cwd(worktree, monkeypatch):
    monkeypatch.chdir(worktree)
    monkeypatch.delenv(config.AUTHOR_ENV, raising=False)
    return worktree


def test_init_add_commit_log(cwd, capsys):
    assert cli.main(["init"]) == 0
    (cwd / "a.txt").write_text("hello")
    assert cli.main(["add", "a.txt"]) == 0
    assert cli.main(["commit", "-m", "first commit", "--author", "alice"]) == 0
    out = capsys.readouterr().out
    oid = out.strip().splitlines()[-1]
    assert data.is_oid(oid)

    assert cli.main(["log"]) == 0
    out = capsys.readouterr().out
    assert f"commit {oid} (HEAD, refs/heads/main)" in out
    assert "Author: alice" in out
    assert "    first commit" in out


def test_status_output(cwd, capsys):
    cli.main(["init"])
    (cwd / "a.txt").write_text("a")
    (cwd / "b.txt").write_text("b")
    cli.main(["add", "a.txt"])
    capsys.readouterr()

    assert cli.main(["status"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out == ["On branch main", "+ added: a.txt", "  untracked: b.txt"]


def test_author_from_environment(cwd, capsys, monkeypatch):
    cli.main(["init"])
    (cwd / "a.txt").write_text("a")
    cli.main(["add", "a.txt"])
    monkeypatch.setenv(config.AUTHOR_ENV, "env author")
    assert cli.main(["commit", "-m", "msg"]) == 0
    repo = data.find_repo(str(cwd))
    assert config.load_config(repo).author == "env author"


def test_commit_without_author_fails(cwd, capsys):
    cli.main(["init"])
    (cwd / "a.txt").write_text("a")
    cli.main(["add", "a.txt"])
    assert cli.main(["commit", "-m", "msg"]) == 1
    assert "no author" in capsys.readouterr().err


def test_errors_exit_non_zero(cwd, capsys):
    assert cli.main(["status"]) == 1
    assert "not a treesnap repository" in capsys.readouterr().err

    cli.main(["init"])
    assert cli.main(["add", "missing.txt"]) == 1
    assert "did not match" in capsys.readouterr().err


def test_branch_and_checkout(cwd, capsys):
    cli.main(["init", "-b", "trunk"])
    (cwd / "a.txt").write_text("one")
    cli.main(["add", "a.txt"])
    cli.main(["commit", "-m", "one", "--author", "alice"])
    cli.main(["branch", "feature"])
    (cwd / "a.txt").write_text("two")
    cli.main(["add", "a.txt"])
    cli.main(["commit", "-m", "two", "--author", "alice"])
    capsys.readouterr()

    assert cli.main(["checkout", "feature"]) == 0
    assert "Switched to branch feature" in capsys.readouterr().out
    assert (cwd / "a.txt").read_text() == "one"

    cli.main(["branch"])
    assert capsys.readouterr().out.splitlines() == ["* feature", "  trunk"]


def test_hash_object_and_cat_file(cwd, capsys):
    cli.main(["init"])
    (cwd / "a.txt").write_bytes(b"hello")
    capsys.readouterr()
    assert cli.main(["hash-object", "-w", "a.txt"]) == 0
    oid = capsys.readouterr().out.strip()
    assert oid == data.hash_object(b"hello")

    assert cli.main(["cat-file", oid[:8]]) == 0
    assert capsys.readouterr().out == "hello"


def test_run_in_other_directory(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    target = tmp_path / "elsewhere"
    target.mkdir()
    assert cli.main(["-C", str(target), "init"]) == 0
    assert (target / data.GIT_DIR / "HEAD").is_file()


def test_duplicate_branch_is_an_error(cwd, capsys):
    cli.main(["init"])
    (cwd / "a.txt").write_text("a")
    cli.main(["add", "a.txt"])
    cli.main(["commit", "-m", "one", "--author", "alice"])
    assert cli.main(["branch", "dev"]) == 0
    capsys.readouterr()

    assert cli.main(["branch", "dev"]) == 1
    assert "error: refs/heads/dev already exists" in capsys.readouterr().err
