"""Tests for context files."""

from __future__ import annotations

from pathlib import Path

import pytest

from graphci.contexts import ContextStore
from graphci.errors import ConfigError


def test_load_expands_host_variables(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEVHUB_SERVER_KEY_HEX", "abcdef")
    path = tmp_path / "contexts.yml"
    path.write_text(
        "org-global:\n"
        "  DEVHUB_CONSUMER_KEY: abc123\n"
        "  DEVHUB_SERVER_KEY_HEX: ${DEVHUB_SERVER_KEY_HEX}\n"
        "  EMPTY:\n",
        encoding="utf-8",
    )

    store = ContextStore.load(path)

    assert "org-global" in store
    assert store.env_for(["org-global"]) == {
        "DEVHUB_CONSUMER_KEY": "abc123",
        "DEVHUB_SERVER_KEY_HEX": "abcdef",
        "EMPTY": "",
    }


def test_later_contexts_win() -> None:
    store = ContextStore({"a": {"X": "1", "Y": "a"}, "b": {"Y": "b"}})

    assert store.env_for(["a", "b"]) == {"X": "1", "Y": "b"}


def test_missing_file_is_empty(tmp_path: Path) -> None:
    store = ContextStore.load(tmp_path / "nope.yml")

    assert "org-global" not in store


def test_non_mapping_file(tmp_path: Path) -> None:
    path = tmp_path / "contexts.yml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        ContextStore.load(path)
