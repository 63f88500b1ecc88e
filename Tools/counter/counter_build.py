# Copyright (c) 2023-2026 Cryft Labs. All rights reserved.
# Licensed under the Apache License, Version 2.0.

"""
Counter Contract Builder
========================
Compiles contracts/Counter.sol with solc's standard-JSON interface and
writes the SimpleCounter ABI and creation bytecode as build artifacts.

Directory layout (relative to the project root):
    contracts/
        Counter.sol             <-- source
        build/                  <-- artifacts appear here
            Counter.abi
            Counter.bin

Any compiler diagnostic (warnings included) aborts the build before
anything is written.

Usage:
    python counter_build.py
    counter-build
"""

import json
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

import certifi
import solcx
import solcx.wrapper
from solcx.exceptions import SolcError, SolcInstallationError, SolcNotInstalled
from solcx.install import get_executable

# A compiler oracle takes standard-JSON input text and returns output text.
Oracle = Callable[[str], str]

APP_DIR = Path(__file__).parent.resolve()
PROJECT_ROOT = APP_DIR.parent.parent
CONTRACTS_DIR = PROJECT_ROOT / "contracts"

DEFAULT_SOLC_VERSION = "0.8.19"

# Final patch release of each closed solc minor line
_LAST_PATCH = {(0, 4): 26, (0, 5): 17, (0, 6): 12, (0, 7): 6}


# ────────────────────────────────────────────
# Configuration and errors
# ────────────────────────────────────────────

@dataclass(frozen=True)
class BuildConfig:
    source_path: Path = CONTRACTS_DIR / "Counter.sol"
    source_id: str = "Counter.sol"
    contract_name: str = "SimpleCounter"
    output_dir: Path = CONTRACTS_DIR / "build"
    abi_filename: str = "Counter.abi"
    bin_filename: str = "Counter.bin"
    solc_version: Optional[str] = None

    @property
    def abi_path(self) -> Path:
        return self.output_dir / self.abi_filename

    @property
    def bin_path(self) -> Path:
        return self.output_dir / self.bin_filename


DEFAULT_CONFIG = BuildConfig()


@dataclass
class BuildResult:
    abi_path: Path
    bin_path: Path
    abi_entries: int
    bytecode_size_bytes: int


class BuildError(Exception):
    """Base class for build failures detected by the orchestrator."""


class CompilationError(BuildError):
    def __init__(self, errors: list):
        self.errors = errors
        super().__init__(f"Compilation failed with {len(errors)} diagnostic(s)")


class ContractNotFoundError(BuildError):
    def __init__(self, contract_name: str, available: list):
        self.contract_name = contract_name
        self.available = available
        super().__init__(
            f"Contract {contract_name} not found in output. Available: {available}"
        )


def eprint(*args, **kwargs):
    print(*args, file=sys.stderr, **kwargs)

def die(msg: str, code: int = 1):
    eprint(f"ERROR: {msg}")
    sys.exit(code)


# ────────────────────────────────────────────
# solc selection and the standard-JSON oracle
# ────────────────────────────────────────────

_VERSION_TERM = re.compile(r"(\^|~|>=|<=|>|<|=)?\s*(\d+)\.(\d+)(?:\.(\d+))?")


def _ver_tuple(version_str: str) -> tuple:
    """Convert '0.8.19' to (0, 8, 19)."""
    return tuple(int(p) for p in version_str.split("."))


def _upper_exclusive(ver: tuple) -> tuple:
    major, minor, patch = ver
    if patch > 0:
        return (major, minor, patch - 1)
    if minor > 0:
        return (major, minor - 1, 99)
    return (major - 1, 99, 99)


def get_pragma_constraints(source: str) -> Tuple[Optional[tuple], Optional[tuple]]:
    """
    Parse `pragma solidity ...;` and return (min_version, max_version).

    Handles: >=0.8.2 <0.8.20, ^0.8.0, ~0.8.4, >0.7.6, 0.8.19, etc.
    Bounds are inclusive tuples of ints, or None when unbounded.
    """
    match = re.search(r"pragma\s+solidity\s+(.+?);", source)
    if not match:
        return None, None

    min_ver = None
    max_ver = None
    for op, major, minor, patch in _VERSION_TERM.findall(match.group(1)):
        ver = (int(major), int(minor), int(patch or 0))
        lo = hi = None
        if op == ">=":
            lo = ver
        elif op == ">":
            lo = (ver[0], ver[1], ver[2] + 1)
        elif op == "<=":
            hi = ver
        elif op == "<":
            hi = _upper_exclusive(ver)
        elif op == "^":
            lo = ver
            hi = (0, ver[1], 99) if ver[0] == 0 else (ver[0], 99, 99)
        elif op == "~":
            lo = ver
            hi = (ver[0], ver[1], 99)
        else:
            lo = hi = ver

        if lo is not None and (min_ver is None or lo > min_ver):
            min_ver = lo
        if hi is not None and (max_ver is None or hi < max_ver):
            max_ver = hi

    return min_ver, max_ver


def _satisfies(ver: tuple, min_ver: Optional[tuple], max_ver: Optional[tuple]) -> bool:
    if min_ver and ver < min_ver:
        return False
    if max_ver and ver > max_ver:
        return False
    return True


def pick_solc_version(source: str) -> str:
    """
    Choose the newest installed solc that satisfies the pragma.
    Otherwise DEFAULT_SOLC_VERSION if it fits, else the pragma's upper
    bound, else its minimum.
    """
    min_ver, max_ver = get_pragma_constraints(source)

    installed = sorted(
        [str(v) for v in solcx.get_installed_solc_versions()],
        key=_ver_tuple,
        reverse=True,
    )
    for v in installed:
        if _satisfies(_ver_tuple(v), min_ver, max_ver):
            return v

    if _satisfies(_ver_tuple(DEFAULT_SOLC_VERSION), min_ver, max_ver):
        return DEFAULT_SOLC_VERSION
    if max_ver:
        major, minor, patch = max_ver
        # 99 stands in for "any patch"
        patch = min(patch, _LAST_PATCH.get((major, minor), patch))
        if patch != 99:
            return f"{major}.{minor}.{patch}"
    if min_ver:
        return ".".join(str(p) for p in min_ver)
    return DEFAULT_SOLC_VERSION


def use_certifi_bundle():
    """Point urllib/requests at certifi's CA bundle for solc downloads."""
    ca_bundle = certifi.where()
    os.environ.setdefault("SSL_CERT_FILE", ca_bundle)
    os.environ.setdefault("REQUESTS_CA_BUNDLE", ca_bundle)


def install_solc(version: str):
    """Install the specified solc version if not already installed."""
    installed = [str(v) for v in solcx.get_installed_solc_versions()]
    if version not in installed:
        print(f"Installing solc {version}...")
        use_certifi_bundle()
        solcx.install_solc(version)


def solc_oracle(version: str) -> Oracle:
    """Return an oracle that runs `solc --standard-json` for the given version."""

    def compile_json(json_input: str) -> str:
        install_solc(version)
        stdout, _stderr, _command, _proc = solcx.wrapper.solc_wrapper(
            solc_binary=get_executable(version),
            stdin=json_input,
            standard_json=True,
        )
        return stdout

    return compile_json


# ────────────────────────────────────────────
# Build steps
# ────────────────────────────────────────────

def load_source(path: Path) -> str:
    # OSError propagates; nothing downstream runs without the source
    return Path(path).read_text(encoding="utf-8")


def build_compiler_input(source_id: str, source: str) -> dict:
    return {
        "language": "Solidity",
        "sources": {source_id: {"content": source}},
        "settings": {
            "outputSelection": {
                "*": {"*": ["abi", "evm.bytecode"]},
            },
        },
    }


def _format_diagnostic(error) -> str:
    if isinstance(error, dict) and error.get("formattedMessage"):
        return error["formattedMessage"].rstrip()
    return json.dumps(error, indent=2)


def decode_output(text: str) -> dict:
    try:
        output = json.loads(text)
    except json.JSONDecodeError as e:
        raise BuildError(f"Compiler returned invalid JSON: {e}") from e
    if not isinstance(output, dict):
        raise BuildError(f"Compiler returned {type(output).__name__}, expected an object")
    return output


def check_errors(output: dict):
    """Raise CompilationError if the output carries any diagnostic at all."""
    errors = output.get("errors") or []
    if not errors:
        return
    eprint("Compilation errors:")
    for error in errors:
        eprint(_format_diagnostic(error))
    raise CompilationError(errors)


def find_contract(output: dict, source_id: str, contract_name: str) -> dict:
    contracts = (output.get("contracts") or {}).get(source_id) or {}
    contract = contracts.get(contract_name)
    if contract is None:
        raise ContractNotFoundError(contract_name, sorted(contracts))
    return contract


def extract_artifacts(contract: dict, contract_name: str) -> Tuple[list, str]:
    """Return (abi, bytecode object) or raise BuildError if either is malformed."""
    try:
        abi = contract["abi"]
        bytecode = contract["evm"]["bytecode"]["object"]
    except (KeyError, TypeError) as e:
        raise BuildError(
            f"Contract {contract_name} output lacks abi or evm.bytecode.object ({e!r})"
        ) from e
    if not isinstance(abi, list) or not isinstance(bytecode, str):
        raise BuildError(f"Contract {contract_name} output has a malformed abi or bytecode")
    return abi, bytecode


def save_artifacts(abi: list, bytecode: str, config: BuildConfig) -> BuildResult:
    """Write the ABI (2-space JSON) and the bytecode object verbatim."""
    config.output_dir.mkdir(parents=True, exist_ok=True)
    config.abi_path.write_text(json.dumps(abi, indent=2), encoding="utf-8")
    config.bin_path.write_text(bytecode, encoding="utf-8")

    return BuildResult(
        abi_path=config.abi_path,
        bin_path=config.bin_path,
        abi_entries=len(abi),
        bytecode_size_bytes=len(bytecode) // 2,
    )


def run(config: BuildConfig = DEFAULT_CONFIG, oracle: Optional[Oracle] = None) -> BuildResult:
    """
    Compile the configured source and write its ABI and bytecode artifacts.

    When no oracle is given, solc is picked from the source's pragma (or
    config.solc_version) and driven through py-solc-x.
    """
    print("\n" + "=" * 60)
    print("  Counter Contract Builder")
    print("=" * 60)
    print(f"\n  Source:     {config.source_path}")
    print(f"  Contract:   {config.contract_name}")
    print(f"  Output dir: {config.output_dir}")

    source = load_source(config.source_path)

    if oracle is None:
        version = config.solc_version or pick_solc_version(source)
        print(f"  Solidity:   {version}")
        oracle = solc_oracle(version)
    print()

    compiler_input = build_compiler_input(config.source_id, source)
    output = decode_output(oracle(json.dumps(compiler_input)))

    check_errors(output)
    contract = find_contract(output, config.source_id, config.contract_name)
    abi, bytecode = extract_artifacts(contract, config.contract_name)
    result = save_artifacts(abi, bytecode, config)

    print("Contract compiled successfully!")
    print(f"  ABI entries: {result.abi_entries}")
    print(f"  Bytecode:    {result.bytecode_size_bytes:,} bytes")
    print(f"  ABI saved to:      {result.abi_path}")
    print(f"  Bytecode saved to: {result.bin_path}")
    return result


# ────────────────────────────────────────────
# Main
# ────────────────────────────────────────────

def main() -> int:
    try:
        run()
    except (OSError, BuildError, SolcError, SolcInstallationError, SolcNotInstalled) as e:
        die(str(e))
    return 0


if __name__ == "__main__":
    sys.exit(main())
