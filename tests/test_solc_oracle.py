"""Tests for solc version selection and the py-solc-x oracle adapter."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

import counter_build
from counter_build import (
    DEFAULT_SOLC_VERSION,
    BuildConfig,
    get_pragma_constraints,
    pick_solc_version,
    solc_oracle,
)

from build_helpers import counter_output


class TestPragmaConstraints:
    """Tests for pragma parsing."""

    @pytest.mark.parametrize(
        ("pragma", "expected"),
        [
            ("^0.8.0", ((0, 8, 0), (0, 8, 99))),
            (">=0.8.2 <0.8.20", ((0, 8, 2), (0, 8, 19))),
            (">=0.7.0 <=0.8.4", ((0, 7, 0), (0, 8, 4))),
            ("0.8.19", ((0, 8, 19), (0, 8, 19))),
            ("~0.8.4", ((0, 8, 4), (0, 8, 99))),
            (">0.7.6", ((0, 7, 7), None)),
            (">=0.6.0 <0.9.0", ((0, 6, 0), (0, 8, 99))),
        ],
    )
    def test_constraints(self, pragma: str, expected) -> None:
        """Test common pragma forms map to inclusive bounds."""
        source = f"pragma solidity {pragma};\ncontract A {{}}"
        assert get_pragma_constraints(source) == expected

    def test_no_pragma(self) -> None:
        """Test a source without pragma is unbounded."""
        assert get_pragma_constraints("contract A {}") == (None, None)


class TestPickSolcVersion:
    """Tests for choosing a solc version."""

    def test_prefers_newest_installed_match(self, monkeypatch) -> None:
        """Test the newest installed version inside the range wins."""
        monkeypatch.setattr(
            counter_build.solcx,
            "get_installed_solc_versions",
            lambda: ["0.7.6", "0.8.10", "0.8.24", "0.8.9"],
        )
        assert pick_solc_version("pragma solidity ^0.8.0;") == "0.8.24"
        assert pick_solc_version("pragma solidity >=0.8.0 <0.8.20;") == "0.8.10"

    def test_falls_back_to_default(self, monkeypatch) -> None:
        """Test nothing installed falls back to the default when it fits."""
        monkeypatch.setattr(counter_build.solcx, "get_installed_solc_versions", lambda: [])
        assert pick_solc_version("pragma solidity ^0.8.0;") == DEFAULT_SOLC_VERSION
        assert pick_solc_version("contract A {}") == DEFAULT_SOLC_VERSION

    def test_falls_back_to_pragma_minimum(self, monkeypatch) -> None:
        """Test the pragma minimum is used when the default is out of range."""
        monkeypatch.setattr(counter_build.solcx, "get_installed_solc_versions", lambda: [])
        assert pick_solc_version("pragma solidity ^0.7.6;") == "0.7.6"
        assert pick_solc_version("pragma solidity >=0.8.24;") == "0.8.24"

    def test_upper_bound_only_pragma(self, monkeypatch) -> None:
        """Test an upper-bound-only pragma never picks a version above the bound."""
        monkeypatch.setattr(counter_build.solcx, "get_installed_solc_versions", lambda: [])
        assert pick_solc_version("pragma solidity <0.8.0;") == "0.7.6"
        assert pick_solc_version("pragma solidity <=0.6.5;") == "0.6.5"
        assert pick_solc_version("pragma solidity <0.8.10;") == "0.8.9"


class TestSolcOracle:
    """Tests for the standard-JSON oracle adapter."""

    def test_runs_standard_json(self, monkeypatch, tmp_path: Path) -> None:
        """Test the oracle pipes input to solc --standard-json and returns stdout."""
        calls = {}
        binary = tmp_path / "solc-v0.8.19"

        def fake_wrapper(**kwargs):
            calls.update(kwargs)
            return '{"contracts": {}}', "", ["solc", "--standard-json"], None

        monkeypatch.setattr(counter_build.solcx, "get_installed_solc_versions", lambda: ["0.8.19"])
        monkeypatch.setattr(counter_build, "get_executable", lambda version: binary)
        monkeypatch.setattr(counter_build.solcx.wrapper, "solc_wrapper", fake_wrapper)

        oracle = solc_oracle("0.8.19")
        assert oracle('{"language": "Solidity"}') == '{"contracts": {}}'
        assert calls == {
            "solc_binary": binary,
            "stdin": '{"language": "Solidity"}',
            "standard_json": True,
        }

    def test_installs_missing_version(self, monkeypatch, tmp_path: Path) -> None:
        """Test a missing solc is installed with certifi configured first."""
        installed = []
        monkeypatch.delenv("SSL_CERT_FILE", raising=False)
        monkeypatch.delenv("REQUESTS_CA_BUNDLE", raising=False)
        monkeypatch.setattr(counter_build.solcx, "get_installed_solc_versions", lambda: [])
        monkeypatch.setattr(counter_build.solcx, "install_solc", installed.append)
        monkeypatch.setattr(counter_build, "get_executable", lambda version: tmp_path / "solc")
        monkeypatch.setattr(
            counter_build.solcx.wrapper,
            "solc_wrapper",
            lambda **kwargs: ("{}", "", [], None),
        )

        solc_oracle("0.8.19")("{}")
        assert installed == ["0.8.19"]
        assert os.environ["SSL_CERT_FILE"] == counter_build.certifi.where()
        assert os.environ["REQUESTS_CA_BUNDLE"] == counter_build.certifi.where()

    def test_run_uses_pragma_version(self, monkeypatch, build_config: BuildConfig, capsys) -> None:
        """Test run builds the solc oracle when none is injected."""
        picked = []

        def fake_oracle(version):
            picked.append(version)
            return lambda json_input: json.dumps(counter_output())

        monkeypatch.setattr(counter_build.solcx, "get_installed_solc_versions", lambda: ["0.8.24"])
        monkeypatch.setattr(counter_build, "solc_oracle", fake_oracle)

        counter_build.run(build_config)
        assert picked == ["0.8.24"]
        assert "0.8.24" in capsys.readouterr().out
        assert build_config.bin_path.exists()

    def test_run_honors_configured_version(self, monkeypatch, build_config: BuildConfig) -> None:
        """Test config.solc_version overrides pragma selection."""
        picked = []

        def fake_oracle(version):
            picked.append(version)
            return lambda json_input: json.dumps(counter_output())

        monkeypatch.setattr(counter_build, "solc_oracle", fake_oracle)
        config = BuildConfig(
            source_path=build_config.source_path,
            output_dir=build_config.output_dir,
            solc_version="0.8.21",
        )
        counter_build.run(config)
        assert picked == ["0.8.21"]

    def test_executable_comes_from_solcx_install(self) -> None:
        """Test the adapter resolves solc through solcx.install.get_executable."""
        import solcx.install

        assert counter_build.get_executable is solcx.install.get_executable
