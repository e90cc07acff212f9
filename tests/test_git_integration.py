"""End-to-end runs against real git repositories served from ``file://`` remotes."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
from pathlib import Path

import pytest
from conftest import FakeClock, RecordingLog

from nghx.config import Settings
from nghx.errors import CloneError
from nghx.ledger import INSTALL_MARKER, PULL_MARKER
from nghx.models import RepositoryTarget
from nghx.pipeline import PipelineContext, RunPipeline
from nghx.sync import RepositorySynchronizer
from nghx.utils import run_command

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

GIT_ENV = {
    "GIT_AUTHOR_NAME": "nghx-tests",
    "GIT_AUTHOR_EMAIL": "nghx-tests@example.invalid",
    "GIT_COMMITTER_NAME": "nghx-tests",
    "GIT_COMMITTER_EMAIL": "nghx-tests@example.invalid",
}

TARGET = RepositoryTarget(owner="acme", name="tool")


def _git(*args: str, cwd: Path) -> str:
    env = dict(os.environ)
    env.update(GIT_ENV)
    result = subprocess.run(
        ["git", *args], cwd=str(cwd), env=env, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
    )
    return result.stdout.strip()


class Upstream:
    def __init__(self, root: Path) -> None:
        self.bare = root / "remote" / "acme" / "tool.git"
        self.work = root / "work"
        self.bare.mkdir(parents=True)
        self.work.mkdir()
        _git("init", "--bare", cwd=self.bare)
        _git("init", cwd=self.work)
        _git("remote", "add", "origin", str(self.bare), cwd=self.work)

    @property
    def remote_base(self) -> str:
        return (self.bare.parent.parent).as_uri()

    def commit(self, files: dict, message: str) -> str:
        for relative, content in files.items():
            path = self.work / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        _git("add", "-A", cwd=self.work)
        _git("commit", "-m", message, cwd=self.work)
        _git("branch", "-M", "main", cwd=self.work)
        _git("push", "origin", "main", cwd=self.work)
        return _git("rev-parse", "HEAD", cwd=self.work)


class NodeToolsRunner:
    """Real git, recorded package-manager calls."""

    def __init__(self) -> None:
        self.package_calls = []

    def __call__(self, command, *, cwd=None, env=None, check=True):
        if command[0] == "git":
            return run_command(command, cwd=cwd, env=env, check=check)
        self.package_calls.append(list(command))
        return subprocess.CompletedProcess(list(command), 0, "", "")


def _run(settings, runner, clock, log, launched):
    def _launcher(argv, *, cwd=None):
        launched.append((list(argv), Path(cwd)))
        return 0

    context = PipelineContext(target=TARGET, settings=settings)
    return RunPipeline(context, runner=runner, launcher=_launcher, clock=clock, log=log).run()


def test_clone_reuse_and_refresh(tmp_path: Path) -> None:
    upstream = Upstream(tmp_path)
    first = upstream.commit(
        {"package.json": json.dumps({"name": "tool", "bin": {"tool": "cli.js"}}), "cli.js": "console.log(1)\n"},
        "first",
    )
    settings = Settings(cache_root=tmp_path / "cache", remote_base=upstream.remote_base)
    clock = FakeClock()
    log = RecordingLog()
    launched = []

    runner = NodeToolsRunner()
    assert _run(settings, runner, clock, log, launched) == 0
    repo_dir = settings.cache_root / "acme" / "tool" / "main"
    assert (repo_dir / "cli.js").exists()
    assert (repo_dir / PULL_MARKER).exists()
    assert (repo_dir / INSTALL_MARKER).read_text() == first
    assert runner.package_calls == [["npm", "install", "--prefer-offline", "--no-audit", "--progress=false"]]
    assert launched[-1] == (["node", str((repo_dir / "cli.js").resolve())], repo_dir)

    clock.advance(10)
    runner = NodeToolsRunner()
    _run(settings, runner, clock, log, launched)
    assert runner.package_calls == []

    second = upstream.commit({"package-lock.json": "{}"}, "second")
    clock.advance(300)
    runner = NodeToolsRunner()
    _run(settings, runner, clock, log, launched)
    assert _git("rev-parse", "HEAD", cwd=repo_dir) == second
    assert (repo_dir / "package-lock.json").exists()
    assert (repo_dir / INSTALL_MARKER).read_text() == second
    assert runner.package_calls == [["npm", "ci", "--prefer-offline", "--no-audit", "--progress=false"]]


def test_unreachable_remote_keeps_working_checkout(tmp_path: Path) -> None:
    upstream = Upstream(tmp_path)
    upstream.commit({"package.json": json.dumps({"name": "tool"})}, "first")
    settings = Settings(cache_root=tmp_path / "cache", remote_base=upstream.remote_base)
    clock = FakeClock()
    log = RecordingLog()
    launched = []
    _run(settings, NodeToolsRunner(), clock, log, launched)

    repo_dir = settings.cache_root / TARGET.cache_key
    markers = {name: (repo_dir / name).read_bytes() for name in (PULL_MARKER, INSTALL_MARKER)}
    shutil.rmtree(upstream.bare)
    clock.advance(300)

    assert _run(settings, NodeToolsRunner(), clock, log, launched) == 0
    assert {name: (repo_dir / name).read_bytes() for name in markers} == markers
    assert log.named("update_failed")
    assert len(launched) == 2


def test_missing_branch_leaves_no_checkout(tmp_path: Path) -> None:
    upstream = Upstream(tmp_path)
    upstream.commit({"package.json": "{}"}, "first")
    settings = Settings(cache_root=tmp_path / "cache", remote_base=upstream.remote_base)
    target = RepositoryTarget(owner="acme", name="tool", branch="does-not-exist")

    with pytest.raises(CloneError):
        RepositorySynchronizer(settings, log=RecordingLog()).prepare(target)
    assert not (settings.cache_root / target.cache_key).exists()
