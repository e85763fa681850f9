import shutil
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from allwaysup import joblog, mirror
from allwaysup.config import Config, IdentityConfig, MirrorConfig
from allwaysup.errors import PreconditionError

requires_rsync = pytest.mark.skipif(
    shutil.which("rsync") is None, reason="rsync missing"
)


@pytest.fixture
def layout(tmp_path: Path) -> Config:
    """Builds a home with a source tree and an initialized mirror target."""
    home = tmp_path / "home"
    source = tmp_path / "source"
    target = tmp_path / "target"
    (home / "logs").mkdir(parents=True)
    source.mkdir()
    (target / ".git").mkdir(parents=True)
    return Config(
        identity=IdentityConfig(home=str(home)),
        mirror=MirrorConfig(
            source=str(source),
            target=str(target),
            exclude=(".git/", "*.log"),
            include=("keep.log",),
        ),
    )


def _log_text(config: Config) -> str:
    return (config.log_dir / "sync_to_repo.log").read_text()


def test_build_rsync_command_order() -> None:
    cmd = mirror.build_rsync_command(
        Path("/home/svc"),
        Path("/home/svc/gitrepo"),
        exclude=["*.log", ".ssh/"],
        include=["keep.log"],
        protect=[".git/"],
    )

    assert cmd == [
        "rsync",
        "-av",
        "--delete",
        "--delete-excluded",
        "--filter=P .git/",
        "--include=keep.log",
        "--exclude=*.log",
        "--exclude=.ssh/",
        "/home/svc/",
        "/home/svc/gitrepo",
    ]


def test_build_rsync_command_keeps_trailing_slash() -> None:
    cmd = mirror.build_rsync_command(Path("/src/"), Path("/dst"), exclude=[])
    assert cmd[-2:] == ["/src/", "/dst"]


def test_check_preconditions(tmp_path: Path) -> None:
    with pytest.raises(PreconditionError, match="identical"):
        mirror.check_preconditions(tmp_path, Path(str(tmp_path) + "/"))

    with pytest.raises(PreconditionError, match="not appear to be a Git repository"):
        mirror.check_preconditions(tmp_path / "a", tmp_path / "plain")


def test_is_mirror_target_with_bare_child(tmp_path: Path) -> None:
    bare = tmp_path / "gitrepo" / "allwaysup.git"
    (bare / "objects").mkdir(parents=True)
    (bare / "refs").mkdir()
    (bare / "HEAD").write_text("ref: refs/heads/main\n")

    assert mirror.is_mirror_target(tmp_path / "gitrepo")
    assert not mirror.is_mirror_target(bare)


def test_run_success_logs_output(layout: Config, mocker: MagicMock) -> None:
    """Verifies a successful sync records rsync output and a success line.

    Args:
        layout (Config): Config pointing at a prepared source and target.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    mock_run = mocker.patch(
        "allwaysup.mirror.subprocess.run",
        return_value=MagicMock(
            returncode=0, stdout="sending incremental file list\na.txt\n", stderr=""
        ),
    )

    assert mirror.run(layout) == 0

    cmd = mock_run.call_args[0][0]
    assert cmd[-2:] == [f"{layout.mirror_source}/", str(layout.mirror_target)]
    text = _log_text(layout)
    assert f"Starting sync from {layout.mirror_source}" in text
    assert "] a.txt" in text
    assert "Sync completed successfully." in text


def test_run_reports_rsync_exit_code(
    layout: Config, mocker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    mocker.patch(
        "allwaysup.mirror.subprocess.run",
        return_value=MagicMock(returncode=23, stdout="", stderr="some files vanished"),
    )

    assert mirror.run(layout) == 23
    text = _log_text(layout)
    assert "some files vanished" in text
    assert "Sync failed with exit code 23" in text
    # Only the summary reaches the console logger, not the rsync output.
    assert "Sync failed with exit code 23. See" in caplog.text
    assert "some files vanished" not in caplog.text


def test_run_unwritable_log_dir_fails_cleanly(
    layout: Config, mocker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies a log directory that cannot be used yields exit 1, not a crash.

    Args:
        layout (Config): Config pointing at a prepared source and target.
        mocker (MagicMock): Pytest fixture for mocking.
        caplog (pytest.LogCaptureFixture): Captures console log records.
    """
    layout.log_dir.rmdir()
    layout.log_dir.write_text("not a directory")
    mock_run = mocker.patch("allwaysup.mirror.subprocess.run")

    assert mirror.run(layout) == 1

    mock_run.assert_not_called()
    assert "Sync could not start" in caplog.text


def test_run_identical_paths_copies_nothing(tmp_path: Path, mocker: MagicMock) -> None:
    home = tmp_path / "home"
    (home / ".git").mkdir(parents=True)
    config = Config(
        identity=IdentityConfig(home=str(home)),
        mirror=MirrorConfig(source=str(home), target=str(home)),
    )
    mock_run = mocker.patch("allwaysup.mirror.subprocess.run")

    assert mirror.run(config) == 1

    mock_run.assert_not_called()
    assert "ERROR: Source and target directories are identical." in _log_text(config)


def test_run_rotates_previous_log(layout: Config, mocker: MagicMock) -> None:
    mocker.patch(
        "allwaysup.mirror.subprocess.run",
        return_value=MagicMock(returncode=0, stdout="", stderr=""),
    )

    mirror.run(layout)
    mirror.run(layout)

    log_file = layout.log_dir / "sync_to_repo.log"
    assert len(joblog.list_archives(log_file)) == 1
    assert _log_text(layout).count("Starting sync") == 1


def test_run_skips_when_locked(layout: Config, mocker: MagicMock) -> None:
    mock_run = mocker.patch("allwaysup.mirror.subprocess.run")

    with joblog.run_lock(layout.log_dir / ".allwaysup.lock"):
        assert mirror.run(layout) == 0

    mock_run.assert_not_called()


@requires_rsync
def test_run_mirrors_tree(layout: Config) -> None:
    """Verifies the target ends up an exact copy of the filtered source."""
    source, target = layout.mirror_source, layout.mirror_target
    (source / "sub").mkdir()
    (source / "a.txt").write_text("a")
    (source / "sub" / "b.txt").write_text("b")
    (source / "skip.log").write_text("noise")
    (source / "keep.log").write_text("kept")
    (source / ".git").mkdir()
    (source / ".git" / "config").write_text("[core]")
    (target / "stale.txt").write_text("gone soon")
    (target / "old.log").write_text("excluded")
    (target / ".git" / "HEAD").write_text("ref: refs/heads/main\n")

    assert mirror.run(layout) == 0

    assert (target / "a.txt").read_text() == "a"
    assert (target / "sub" / "b.txt").read_text() == "b"
    assert (target / "keep.log").read_text() == "kept"
    assert not (target / "skip.log").exists()
    assert not (target / "stale.txt").exists()
    assert not (target / "old.log").exists()
    assert (target / ".git" / "HEAD").read_text() == "ref: refs/heads/main\n"
    assert not (target / ".git" / "config").exists()
