"""Pytest configuration and fixtures for windowkeeper tests."""

from pathlib import Path
from typing import Callable, Optional

import pytest

from windowkeeper.context import CanonicalHistory, Message, Role, StructuredBlock, TextBlock

HistoryFactory = Callable[..., CanonicalHistory]


def _build_history(
    pairs: int,
    reads: Optional[dict[int, str]] = None,
    body_size: int = 400,
) -> CanonicalHistory:
    reads = reads or {}
    history = CanonicalHistory()
    for index in range(pairs * 2):
        role = Role.USER if index % 2 == 0 else Role.ASSISTANT
        blocks: list = [TextBlock(text=f"{role.value} message {index}")]
        if index in reads:
            path = reads[index]
            blocks.append(
                StructuredBlock(
                    kind="read_file",
                    identifier=path,
                    body=f"# contents of {path} read at {index}\n" + "x" * body_size,
                )
            )
        history.append(Message(role=role, blocks=tuple(blocks)))
    return history


@pytest.fixture
def make_history() -> HistoryFactory:
    """Factory for alternating histories.

    make_history(pairs, reads={message_index: path}, body_size=400) builds
    `pairs` user/assistant pairs; messages listed in `reads` get an extra
    read_file block for that path.
    """
    return _build_history


@pytest.fixture(autouse=True)
def isolated_xdg(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG directories at a temp dir so tests never touch $HOME."""
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    return tmp_path


@pytest.fixture
def temp_config(tmp_path: Path) -> Path:
    """Create temporary config file.

    Returns:
        Path to config file.
    """
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
context:
  capacity: 1000
  reserved_output_tokens: 100
  safety_buffer: 100
  truncation_policy: half
storage:
  backend: file
  directory: {tmp_path / "sessions"}
logging:
  level: WARNING
  debug_to_file: false
  use_colors: false
"""
    )
    return config_path
