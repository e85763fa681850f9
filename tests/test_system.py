import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from allwaysup import system
from allwaysup.config import Config, IdentityConfig
from allwaysup.constants import HOME_SKELETON
from allwaysup.errors import PreconditionError, ProvisioningError


def test_as_user() -> None:
    assert system.as_user(["git", "status"], None) == ["git", "status"]
    assert system.as_user(["git", "status"], "svc") == [
        "sudo",
        "-u",
        "svc",
        "git",
        "status",
    ]


def test_require_root_rejects_unprivileged(mocker: MagicMock) -> None:
    mocker.patch("os.geteuid", return_value=1000)

    with pytest.raises(PreconditionError, match="must run as root"):
        system.require_root()


def test_require_root_accepts_root(mocker: MagicMock) -> None:
    mocker.patch("os.geteuid", return_value=0)
    system.require_root()
    assert system.is_root()


def test_lookup_home_missing_account(mocker: MagicMock) -> None:
    mocker.patch("pwd.getpwnam", side_effect=KeyError("nobody-here"))
    assert system.lookup_home("nobody-here") is None


def test_resolve_home_prefers_account_database(
    tmp_path: Path, mocker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    mocker.patch("allwaysup.system.lookup_home", return_value=tmp_path)
    config = Config(identity=IdentityConfig(home="/home/elsewhere"))

    resolved = system.resolve_home(config)

    assert resolved.home == tmp_path
    assert resolved.log_dir == tmp_path / "logs"
    assert "configuration expects /home/elsewhere" in caplog.text


def test_resolve_home_without_account(mocker: MagicMock) -> None:
    mocker.patch("allwaysup.system.lookup_home", return_value=None)
    config = Config()

    assert system.resolve_home(config) is config


def test_require_service_identity(mocker: MagicMock) -> None:
    """Verifies jobs are refused for root unless root is the service account."""
    mocker.patch("os.geteuid", return_value=0)
    with pytest.raises(PreconditionError, match="sudo -u allwaysup allwaysup"):
        system.require_service_identity(Config())
    system.require_service_identity(Config(identity=IdentityConfig(user="root")))

    mocker.patch("os.geteuid", return_value=1001)
    system.require_service_identity(Config())


def test_chown_without_user_is_noop(tmp_path: Path, mocker: MagicMock) -> None:
    mock_run = mocker.patch("subprocess.run")
    system.chown(tmp_path, None)
    mock_run.assert_not_called()


def test_chown_recursive(tmp_path: Path, mocker: MagicMock) -> None:
    mock_run = mocker.patch("subprocess.run")

    system.chown(tmp_path, "svc", recursive=True)

    assert mock_run.call_args[0][0] == ["chown", "-R", "svc:", str(tmp_path)]


def test_create_account_failure(mocker: MagicMock) -> None:
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(9, ["useradd"], stderr="exists"),
    )

    with pytest.raises(ProvisioningError, match="Could not create user 'svc'"):
        system.create_account("svc", "/bin/bash")


def test_ensure_identity_existing_account(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that an existing account is reused and only the skeleton is applied.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    config = Config(identity=IdentityConfig(user="svc", home=str(tmp_path)))
    mocker.patch("allwaysup.system.lookup_home", return_value=tmp_path)
    mock_create = mocker.patch("allwaysup.system.create_account")
    mock_chown = mocker.patch("allwaysup.system.chown")

    identity = system.ensure_identity(config)

    mock_create.assert_not_called()
    assert identity == system.ServiceIdentity(name="svc", home=tmp_path)
    for sub in HOME_SKELETON:
        assert (tmp_path / sub).is_dir()
    mock_chown.assert_called_once_with(tmp_path, "svc", recursive=True)


def test_ensure_identity_creates_account(tmp_path: Path, mocker: MagicMock) -> None:
    config = Config(identity=IdentityConfig(user="svc", home=str(tmp_path)))
    mocker.patch("allwaysup.system.lookup_home", side_effect=[None, tmp_path])
    mock_create = mocker.patch("allwaysup.system.create_account")
    mocker.patch("allwaysup.system.chown")

    identity = system.ensure_identity(config)

    mock_create.assert_called_once_with("svc", "/bin/bash", str(tmp_path))
    assert identity.home == tmp_path


def test_ensure_identity_uses_actual_home(
    tmp_path: Path, mocker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    actual = tmp_path / "elsewhere"
    config = Config(identity=IdentityConfig(user="svc", home=str(tmp_path / "cfg")))
    mocker.patch("allwaysup.system.lookup_home", return_value=actual)
    mocker.patch("allwaysup.system.chown")

    identity = system.ensure_identity(config)

    assert identity.home == actual
    assert (actual / "logs").is_dir()
    assert "configuration expects" in caplog.text
