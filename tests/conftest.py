import itertools
from unittest.mock import MagicMock

import pytest

from wgsetup.structures import KeyPair


@pytest.fixture
def mock_subproc(mocker):
    """Mock subprocess.run to avoid actual execution."""
    mock_run = mocker.patch("subprocess.run")
    # Default behavior: return success with empty output
    mock_run.return_value = MagicMock(stdout="", stderr="", returncode=0)
    return mock_run


@pytest.fixture
def mock_requests(mocker):
    """Mock requests.get so no HTTP request leaves the test."""
    mock_get = mocker.patch("requests.get")
    mock_get.return_value = MagicMock(status_code=200, text="203.0.113.7\n")
    return mock_get


@pytest.fixture
def tools_present(mocker):
    """Pretend wg and iptables are installed."""
    mocker.patch("shutil.which", side_effect=lambda name: f"/usr/bin/{name}")


@pytest.fixture
def fake_keygen():
    """Deterministic key pairs: SERVER first, then CLIENT1, CLIENT2, ..."""
    counter = itertools.count()

    def keygen() -> KeyPair:
        n = next(counter)
        name = "SERVER" if n == 0 else f"CLIENT{n}"
        return KeyPair(private_key=f"{name}_PRIV", public_key=f"{name}_PUB")

    return keygen
