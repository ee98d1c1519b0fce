"""End-to-end tests through run_sync and the CLI."""

import os
import shutil
import tempfile
import zipfile
from datetime import datetime
from pathlib import Path

import pytest

from repopack import context
from repopack.cli import main
from repopack.config import SyncConfig
from repopack.errors import CloneError
from repopack.git import current_branch, list_remotes
from repopack.sync import run_sync

from conftest import git


def _build_tree(tmp: str, make_repo) -> str:
    repos = os.path.join(tmp, "repos")
    make_repo(os.path.join(repos, "foo-sync"), remotes={"origin": "https://example.com/foo.git"})
    make_repo(os.path.join(repos, "bar"), remotes={"origin": "https://example.com/bar.git"})
    baz = make_repo(
        os.path.join(repos, "baz-sync"),
        remotes={"origin": "https://example.com/baz.git", "backup": "ssh://backup/baz.git"},
    )
    git(baz, "checkout", "-b", "topic")
    return repos


def _top_level(archive) -> set:
    with zipfile.ZipFile(archive) as zf:
        return {name.split("/")[0] for name in zf.namelist()}


def test_run_sync_end_to_end(make_repo):
    with tempfile.TemporaryDirectory() as tmp:
        repos = _build_tree(tmp, make_repo)
        out = Path(tmp) / "out"
        out.mkdir()
        config = SyncConfig.from_env(
            r"-sync$", environ={}, root=repos, output_dir=out, keep_staging=True,
        )

        report = run_sync(config)
        try:
            assert report.archive.parent == out.resolve()
            assert report.archive.name.startswith("SYNC_")
            assert report.archive.suffix == ".zip"
            assert _top_level(report.archive) == {"foo-sync", "baz-sync"}
            assert sorted(r.name for r in report.cloned) == ["baz-sync", "foo-sync"]
            assert report.failed == []
            assert report.skipped == []

            baz = report.staging_dir / "baz-sync"
            assert current_branch(baz) == "topic"
            assert {r.name: r.urls for r in list_remotes(baz)} == {
                "origin": ["https://example.com/baz.git"],
                "backup": ["ssh://backup/baz.git"],
            }
            with zipfile.ZipFile(report.archive) as zf:
                assert zf.read("baz-sync/.git/HEAD") == b"ref: refs/heads/topic\n"
        finally:
            shutil.rmtree(report.staging_dir, ignore_errors=True)


def test_run_sync_removes_staging(make_repo):
    with tempfile.TemporaryDirectory() as tmp:
        repos = _build_tree(tmp, make_repo)
        config = SyncConfig.from_env(r"-sync$", environ={}, root=repos, output_dir=tmp)
        report = run_sync(config)
        assert report.archive.exists()
        assert not report.staging_dir.exists()


def test_run_sync_isolates_failed_clone(make_repo):
    with tempfile.TemporaryDirectory() as tmp:
        repos = _build_tree(tmp, make_repo)
        git(os.path.join(repos, "foo-sync"), "checkout", "--detach")
        config = SyncConfig.from_env(r"-sync$", environ={}, root=repos, output_dir=tmp)

        report = run_sync(config)

        assert [r.name for r in report.failed] == ["foo-sync"]
        assert _top_level(report.archive) == {"baz-sync"}


def test_run_sync_fail_fast(make_repo):
    with tempfile.TemporaryDirectory() as tmp:
        repos = _build_tree(tmp, make_repo)
        git(os.path.join(repos, "foo-sync"), "checkout", "--detach")
        out = Path(tmp) / "out"
        out.mkdir()
        config = SyncConfig.from_env(
            r"-sync$", environ={}, root=repos, output_dir=out, fail_fast=True,
        )
        with pytest.raises(CloneError, match="foo-sync"):
            run_sync(config)
        assert list(out.iterdir()) == []


class _FrozenDatetime(datetime):
    @classmethod
    def now(cls, tz=None):
        return cls(2026, 1, 2, 3, 4, 5)


def test_run_sync_same_second_keeps_both_archives(make_repo, monkeypatch):
    monkeypatch.setattr(context, "datetime", _FrozenDatetime)
    with tempfile.TemporaryDirectory() as tmp:
        repos = _build_tree(tmp, make_repo)
        out = Path(tmp) / "out"
        out.mkdir()

        first = run_sync(SyncConfig.from_env(r"^foo-sync$", environ={}, root=repos, output_dir=out))
        second = run_sync(SyncConfig.from_env(r"^baz-sync$", environ={}, root=repos, output_dir=out))

        assert first.archive.name == "SYNC_20260102030405.zip"
        assert second.archive.name.startswith("SYNC_20260102030405_")
        assert _top_level(first.archive) == {"foo-sync"}
        assert _top_level(second.archive) == {"baz-sync"}


def test_cli_end_to_end(make_repo, capsys):
    with tempfile.TemporaryDirectory() as tmp:
        repos = _build_tree(tmp, make_repo)
        notes = Path(tmp) / "notes.txt"
        notes.write_text("read me\n")
        out = Path(tmp) / "out"
        out.mkdir()

        code = main([r"-sync$", str(notes), "--root", repos, "--output-dir", str(out)])

        assert code == 0
        archive = Path(capsys.readouterr().out.strip())
        assert archive.is_absolute()
        assert archive.parent == out.resolve()
        assert _top_level(archive) == {"foo-sync", "baz-sync", "notes.txt"}


def test_cli_no_matches_still_archives(capsys):
    with tempfile.TemporaryDirectory() as tmp:
        code = main(["nothing-matches", "--root", tmp, "--output-dir", tmp])
        assert code == 0
        archive = Path(capsys.readouterr().out.strip())
        with zipfile.ZipFile(archive) as zf:
            assert zf.namelist() == []


def test_cli_list(make_repo, capsys):
    with tempfile.TemporaryDirectory() as tmp:
        repos = _build_tree(tmp, make_repo)
        code = main([r"-sync$", "--root", repos, "--list"])
        assert code == 0
        lines = capsys.readouterr().out.split()
        assert lines == [
            os.path.join(os.path.realpath(repos), "baz-sync"),
            os.path.join(os.path.realpath(repos), "foo-sync"),
        ]


def test_cli_pattern_option(make_repo, capsys):
    with tempfile.TemporaryDirectory() as tmp:
        repos = _build_tree(tmp, make_repo)
        notes = Path(tmp) / "notes.txt"
        notes.write_text("read me\n")

        code = main(["--root", repos, "-e", r"-sync$", str(notes), "--output-dir", tmp])

        assert code == 0
        archive = Path(capsys.readouterr().out.strip())
        assert _top_level(archive) == {"foo-sync", "baz-sync", "notes.txt"}


def test_cli_dash_pattern_after_options(make_repo, capsys):
    with tempfile.TemporaryDirectory() as tmp:
        repos = _build_tree(tmp, make_repo)
        code = main(["-v", "--root", repos, "-j", "2", "--list", r"-sync$"])
        assert code == 0
        assert len(capsys.readouterr().out.split()) == 2


def test_cli_missing_pattern(capsys):
    with pytest.raises(SystemExit) as info:
        main([])
    assert info.value.code == 2
    assert "usage" in capsys.readouterr().err


def test_cli_bad_pattern(capsys):
    code = main(["(unclosed"])
    assert code == 1
    assert "invalid name pattern" in capsys.readouterr().err


def test_cli_missing_aux_file(capsys):
    with tempfile.TemporaryDirectory() as tmp:
        code = main(["x", os.path.join(tmp, "missing.txt"), "--root", tmp])
        assert code == 1
        assert "auxiliary file not found" in capsys.readouterr().err


def test_render_report_rows():
    from repopack.cloner import CloneResult
    from repopack.git import Remote
    from repopack.scanner import SkippedPath
    from repopack.sync import SyncReport
    from repopack.theme import render_report

    report = SyncReport(
        results=[
            CloneResult("/r/a-sync", Path("/s/a-sync"), branch="main", remotes=[Remote("origin", ["u"])]),
            CloneResult("/r/b-sync", Path("/s/b-sync"), error="boom"),
        ],
        skipped=[SkippedPath("/r/locked", "Permission denied")],
    )
    table = render_report(report)
    assert table.row_count == 3
    assert table.caption == "1 cloned · 1 failed · 1 skipped"
