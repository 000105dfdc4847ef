"""Shared fixtures for runbook tests."""

import pytest

from runbook.config import AssetConfig, Config
from runbook.fragment import Fragment, FragmentType
from runbook.runner import ProcessRunner


def make_fragment(name: str | None, body=None, id: str | None = None, **kwargs) -> Fragment:
    """Build a fragment with its id defaulting to its name."""
    return Fragment(id=id or name or "anon", public_name=name, body=list(body or []), **kwargs)


def heading(id: str, level: int, token: str = "") -> Fragment:
    return Fragment(id=id, type=FragmentType.HEADING, hierarchy_level=level, token=token, body=[id])


def text(id: str) -> Fragment:
    return Fragment(id=id, type=FragmentType.TEXT, body=[id])


@pytest.fixture
def sample_config(tmp_path):
    """Create a Config with data directories under tmp_path."""
    return Config(
        shell="bash",
        relay_stdin=False,
        data_directory=tmp_path / "data",
        assets=AssetConfig(
            script_directory=tmp_path / "data" / "scripts",
            output_directory=tmp_path / "data" / "logs",
        ),
    )


@pytest.fixture
def runner():
    """A bash runner that does not touch the terminal's stdin."""
    return ProcessRunner(shell="bash", timeout=10, relay_stdin=False)


@pytest.fixture
def clean_env(monkeypatch):
    """Variables set by vars blocks in tests; removed again afterwards."""
    names = ["RB_GREETING", "RB_NAME", "RB_REGION", "RB_QUOTED"]
    for name in names:
        monkeypatch.delenv(name, raising=False)
    return names


@pytest.fixture
def sample_documents(tmp_path):
    """Create a main document that links to a second one."""
    docs = tmp_path / "docs"
    docs.mkdir()

    (docs / "main.md").write_text(
        "# Main\n"
        "\n"
        "Intro text.\n"
        "\n"
        "```bash :setup\n"
        "echo setup\n"
        "```\n"
        "\n"
        "```bash :build +setup\n"
        "echo build\n"
        "```\n"
        "\n"
        "## Deploy\n"
        "\n"
        "```link :go-other\n"
        f"file: {docs / 'other.md'}\n"
        "block: hello\n"
        "```\n"
    )
    (docs / "other.md").write_text(
        "# Other\n"
        "\n"
        "```bash :hello\n"
        "echo hello from other\n"
        "```\n"
    )
    (docs / "shared.md").write_text(
        "```bash :shared\n"
        "echo shared\n"
        "```\n"
    )
    return docs
