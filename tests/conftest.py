"""Shared fixtures for the counter build tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from build_helpers import COUNTER_SOURCE, StubOracle, counter_output
from counter_build import BuildConfig


@pytest.fixture
def build_config(tmp_path: Path) -> BuildConfig:
    """Config rooted in tmp_path with Counter.sol in place."""
    contracts_dir = tmp_path / "contracts"
    contracts_dir.mkdir()
    (contracts_dir / "Counter.sol").write_text(COUNTER_SOURCE, encoding="utf-8")
    return BuildConfig(
        source_path=contracts_dir / "Counter.sol",
        output_dir=contracts_dir / "build",
    )


@pytest.fixture
def make_oracle() -> Callable[..., StubOracle]:
    def _make(output: dict[str, Any] | None = None) -> StubOracle:
        return StubOracle(counter_output() if output is None else output)

    return _make
