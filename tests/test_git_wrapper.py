import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, call

import pytest

from allwaysup.git_wrapper import GitRepo, is_bare_repository, is_repository

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git missing")


@pytest.fixture
def bare_layout(tmp_path: Path) -> Path:
    """Creates the minimal on-disk layout of a bare repository."""
    path = tmp_path / "mirror.git"
    (path / "objects").mkdir(parents=True)
    (path / "refs").mkdir()
    (path / "HEAD").write_text("ref: refs/heads/main\n")
    return path


def test_is_repository(tmp_path: Path, bare_layout: Path) -> None:
    work = tmp_path / "work"
    (work / ".git").mkdir(parents=True)

    assert is_repository(work)
    assert is_repository(bare_layout)
    assert is_bare_repository(bare_layout)
    assert not is_bare_repository(work)
    assert not is_repository(tmp_path / "plain")


def test_gitrepo_rejects_non_repository(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_gitrepo_accepts_bare_layout(bare_layout: Path) -> None:
    assert GitRepo(bare_layout).path == bare_layout


def test_run_as_prefixes_sudo(bare_layout: Path, mocker: MagicMock) -> None:
    mock_run = mocker.patch("subprocess.run")
    mock_run.return_value.stdout = "main\n"

    repo = GitRepo(bare_layout, run_as="svc")

    assert repo.current_branch() == "main"
    args = mock_run.call_args[0][0]
    assert args == ["sudo", "-u", "svc", "git", "branch", "--show-current"]
    assert mock_run.call_args[1]["cwd"] == bare_layout


def test_run_wraps_failures(bare_layout: Path, mocker: MagicMock) -> None:
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(128, ["git"], stderr="fatal: nope"),
    )

    with pytest.raises(RuntimeError, match="Git error: fatal: nope"):
        GitRepo(bare_layout).commit_count()


def test_set_remote_ignores_missing_remote(
    bare_layout: Path, mocker: MagicMock
) -> None:
    """Verifies that set_remote tolerates a failing removal and then adds.

    Args:
        bare_layout (Path): A bare repository layout.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    repo = GitRepo(bare_layout)
    mock_run = mocker.patch.object(
        repo, "_run", side_effect=[RuntimeError("Git error: No such remote"), ""]
    )

    repo.set_remote("upstream", "git@github.com:acme/repo.git")

    assert mock_run.call_args_list == [
        call(["remote", "remove", "upstream"]),
        call(["remote", "add", "upstream", "git@github.com:acme/repo.git"]),
    ]


def test_has_staged_changes(bare_layout: Path, mocker: MagicMock) -> None:
    repo = GitRepo(bare_layout)
    mock_run = mocker.patch.object(repo, "_run", return_value="")
    assert repo.has_staged_changes() is False

    mock_run.return_value = "README.md"
    assert repo.has_staged_changes() is True
    mock_run.assert_called_with(["diff", "--cached", "--name-only"])


def test_commit_count(bare_layout: Path, mocker: MagicMock) -> None:
    repo = GitRepo(bare_layout)
    mocker.patch.object(repo, "_run", side_effect=["", "3"])

    assert repo.commit_count() == 0
    assert repo.commit_count() == 3


def test_push_all_keeps_repository_ssh_command(
    bare_layout: Path, mocker: MagicMock
) -> None:
    repo = GitRepo(bare_layout)
    mock_run = mocker.patch.object(repo, "_run", return_value="")

    repo.push_all("origin")

    mock_run.assert_called_once_with(["push", "--all", "origin"])


def test_remote_url_missing(bare_layout: Path, mocker: MagicMock) -> None:
    repo = GitRepo(bare_layout)
    mocker.patch.object(repo, "_run", side_effect=RuntimeError("Git error"))

    assert repo.remote_url("origin") is None
    assert repo.get_config("core.sshCommand") is None


@requires_git
def test_init_creates_real_repositories(tmp_path: Path) -> None:
    work = GitRepo.init(tmp_path / "work")
    bare = GitRepo.init(tmp_path / "mirror.git", bare=True)

    assert (work.path / ".git").is_dir()
    assert is_bare_repository(bare.path)
    assert work.commit_count() == 0
    assert bare.list_remotes() == []

    work.set_config("core.sshCommand", "ssh -i /k")
    assert work.get_config("core.sshCommand") == "ssh -i /k"
    assert bare.get_config("core.sshCommand") is None
