# Copyright (c) 2023-2026 Cryft Labs. All rights reserved.
# Licensed under the Apache License, Version 2.0.

"""
SimpleCounter Client
====================
Deploys the SimpleCounter artifacts written by counter_build.py and talks
to the deployed contract over JSON-RPC.

Reads contracts/build/Counter.abi and contracts/build/Counter.bin, and a
YAML config (default: config.yaml at the project root, see
config.example.yaml) naming the RPC endpoint and the signing key:

    ethereum:
      accounts:
        test_private_key: ${COUNTER_PRIVATE_KEY}
      networks:
        sepolia:
          rpc_url: https://sepolia.infura.io/v3/<key>
          chain_id: 11155111

Usage:
    python counter_client.py status [--address 0x...]
    python counter_client.py deploy
    python counter_client.py count --address 0x...
    python counter_client.py increment --address 0x...
    python counter_client.py decrement --address 0x...
    python counter_client.py events --address 0x... [--from-block N]
    python counter_client.py block [--block N]
    python counter_client.py tx --tx-hash 0x...
    python counter_client.py transfer --to 0x... --amount-eth 0.001

Common flags: --config PATH, --network NAME, --rpc URL, --prompt-key
"""

import argparse
import json
import os
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from getpass import getpass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from eth_account import Account
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

APP_DIR = Path(__file__).parent.resolve()
PROJECT_ROOT = APP_DIR.parent.parent
BUILD_DIR = PROJECT_ROOT / "contracts" / "build"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"

DEFAULT_NETWORK = "sepolia"
MIN_DEPLOY_BALANCE_WEI = 10**16  # 0.01 ETH
RECEIPT_TIMEOUT_S = 300
GAS_LIMIT_TRANSFER = 21000
COUNT_EVENT = "CountChanged"


class ClientError(Exception):
    """Raised for any failure the client reports and exits on."""


def eprint(*args, **kwargs):
    print(*args, file=sys.stderr, **kwargs)

def die(msg: str, code: int = 1):
    eprint(f"ERROR: {msg}")
    sys.exit(code)


# ----------------------------
# Config
# ----------------------------

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _resolve_env(value):
    if not value or not isinstance(value, str):
        return value
    match = _ENV_PATTERN.fullmatch(value.strip())
    if match:
        return os.getenv(match.group(1)) or ""
    return value


@dataclass(frozen=True)
class NetworkConfig:
    rpc_url: str
    chain_id: Optional[int] = None


@dataclass(frozen=True)
class ClientConfig:
    networks: Dict[str, NetworkConfig] = field(default_factory=dict)
    private_key: str = ""

    @classmethod
    def load(cls, path: Path) -> "ClientConfig":
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        ethereum = data.get("ethereum") or {}
        accounts = ethereum.get("accounts") or {}

        networks = {}
        for name, net in (ethereum.get("networks") or {}).items():
            net = net or {}
            rpc_url = _resolve_env(net.get("rpc_url"))
            if not rpc_url:
                continue
            chain_id = net.get("chain_id")
            networks[name] = NetworkConfig(
                rpc_url=rpc_url,
                chain_id=int(chain_id) if chain_id is not None else None,
            )

        return cls(
            networks=networks,
            private_key=_resolve_env(accounts.get("test_private_key")) or "",
        )

    def network(self, name: str) -> NetworkConfig:
        if name not in self.networks:
            raise ClientError(
                f"Network '{name}' not configured. Available: {sorted(self.networks)}"
            )
        return self.networks[name]


# ----------------------------
# Web3 helpers
# ----------------------------

def setup_web3(rpc_url: str, expected_chain_id: Optional[int] = None) -> Web3:
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
    if not w3.is_connected():
        raise ClientError(f"cannot connect to RPC: {rpc_url}")

    # PoA/QBFT chains carry oversized extraData; strip it so block decoding works.
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

    if expected_chain_id is not None:
        chain_id = int(w3.eth.chain_id)
        if chain_id != expected_chain_id:
            raise ClientError(
                f"RPC reports chainId {chain_id}, config expects {expected_chain_id}"
            )
    return w3


def eth_to_wei(eth: Decimal) -> int:
    return int(eth * Decimal(10**18))


def wei_to_eth(wei: int) -> Decimal:
    return Decimal(wei) / Decimal(10**18)


def safe_int(x) -> int:
    return int(x) if x is not None else 0


def get_fee_fields(w3: Web3, tip_wei: int, max_fee_multiplier: int) -> Tuple[Dict, int]:
    """
    Returns (tx_fee_fields, worst_fee_per_gas_wei).

    If chain has baseFeePerGas -> EIP-1559 type 2 tx.
    Otherwise -> legacy gasPrice tx.
    """
    latest = w3.eth.get_block("latest")
    base_fee = latest.get("baseFeePerGas", None)

    if base_fee is None:
        gp = safe_int(w3.eth.gas_price)
        gas_price = max(gp, tip_wei)
        return ({"gasPrice": gas_price}, gas_price)

    max_fee = safe_int(base_fee) * max_fee_multiplier + tip_wei
    return (
        {
            "type": 2,
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": tip_wei,
        },
        max_fee,
    )


def base_tx(w3: Web3, acct, tip_wei: int = 10**9, max_fee_multiplier: int = 2) -> Dict:
    """Sender, pending nonce, chainId and fee fields for a new transaction."""
    tx = {
        "from": acct.address,
        "chainId": int(w3.eth.chain_id),
        "nonce": w3.eth.get_transaction_count(acct.address, "pending"),
    }
    fee_fields, _worst = get_fee_fields(w3, tip_wei, max_fee_multiplier)
    tx.update(fee_fields)
    return tx


def sign_and_send(w3: Web3, acct, tx: Dict) -> str:
    signed = acct.sign_transaction(tx)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    return Web3.to_hex(tx_hash)


def wait_for_receipt(w3: Web3, tx_hash: str, timeout: int = RECEIPT_TIMEOUT_S):
    """Block until mined; a reverted transaction (status 0) is an error."""
    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    if receipt.get("status") != 1:
        raise ClientError(
            f"transaction {tx_hash} reverted in block {receipt.get('blockNumber')}"
        )
    return receipt


# ----------------------------
# Artifacts and contract calls
# ----------------------------

def load_artifacts(build_dir: Path = BUILD_DIR) -> Tuple[List, str]:
    """Read Counter.abi and Counter.bin; returns (abi, 0x-prefixed bytecode)."""
    build_dir = Path(build_dir)
    abi = json.loads((build_dir / "Counter.abi").read_text(encoding="utf-8"))
    bytecode = (build_dir / "Counter.bin").read_text(encoding="utf-8").strip()
    if not bytecode:
        raise ClientError(f"empty bytecode in {build_dir / 'Counter.bin'}")
    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode
    return abi, bytecode


def load_account(private_key: str):
    if not private_key:
        raise ClientError("no private key: set ethereum.accounts.test_private_key or use --prompt-key")
    return Account.from_key(private_key)


def counter_contract(w3: Web3, abi: List, address: str):
    if not Web3.is_address(address):
        raise ClientError(f"invalid contract address: {address}")
    return w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)


@dataclass
class DeployResult:
    address: str
    tx_hash: str
    block_number: int
    gas_used: int


def deploy_counter(
    w3: Web3,
    acct,
    abi: List,
    bytecode: str,
    min_balance_wei: int = MIN_DEPLOY_BALANCE_WEI,
) -> DeployResult:
    balance = w3.eth.get_balance(acct.address)
    print(f"  Account: {acct.address}")
    print(f"  Balance: {wei_to_eth(balance)} ETH")
    if balance < min_balance_wei:
        raise ClientError(
            f"balance {wei_to_eth(balance)} ETH below the {wei_to_eth(min_balance_wei)} ETH needed to deploy"
        )

    factory = w3.eth.contract(abi=abi, bytecode=bytecode)
    tx = factory.constructor().build_transaction(base_tx(w3, acct))
    tx_hash = sign_and_send(w3, acct, tx)
    print(f"  Deploy tx: {tx_hash}")
    print("  Waiting for confirmation...")

    receipt = wait_for_receipt(w3, tx_hash)
    return DeployResult(
        address=receipt["contractAddress"],
        tx_hash=tx_hash,
        block_number=receipt["blockNumber"],
        gas_used=receipt["gasUsed"],
    )


def get_count(contract) -> int:
    return contract.functions.getCount().call()


def send_counter_tx(w3: Web3, acct, contract, fn_name: str):
    """Send increment()/decrement(), wait for it, return (tx_hash, receipt)."""
    fn = getattr(contract.functions, fn_name)
    tx = fn().build_transaction(base_tx(w3, acct))
    tx_hash = sign_and_send(w3, acct, tx)
    print(f"  {fn_name} tx: {tx_hash}")
    return tx_hash, wait_for_receipt(w3, tx_hash)


def query_count_events(w3: Web3, contract, from_block: int = 0, to_block="latest") -> List[Dict]:
    """Return CountChanged logs as [{blockNumber, txHash, newCount}, ...]."""
    topic = Web3.to_hex(Web3.keccak(text=f"{COUNT_EVENT}(uint256)"))
    logs = w3.eth.get_logs({
        "address": contract.address,
        "fromBlock": from_block,
        "toBlock": to_block,
        "topics": [topic],
    })
    event = getattr(contract.events, COUNT_EVENT)()
    results = []
    for log in logs:
        decoded = event.process_log(log)
        results.append({
            "blockNumber": decoded["blockNumber"],
            "txHash": Web3.to_hex(decoded["transactionHash"]),
            "newCount": decoded["args"]["newCount"],
        })
    return results


def block_summary(w3: Web3, block_id="latest") -> Dict:
    block = w3.eth.get_block(block_id)
    parent = block.get("parentHash")
    return {
        "blockNumber": block["number"],
        "blockHash": Web3.to_hex(block["hash"]),
        "parentHash": Web3.to_hex(parent) if parent is not None else None,
        "timestamp": datetime.fromtimestamp(block["timestamp"], tz=timezone.utc).isoformat(),
        "transactionCount": len(block.get("transactions", [])),
        "gasUsed": block["gasUsed"],
        "gasLimit": block["gasLimit"],
        "miner": block.get("miner"),
    }


def network_status(w3: Web3, address: Optional[str] = None) -> Dict:
    """Latest block summary, gas price and optionally an account's balance/nonce."""
    status = {"chainId": int(w3.eth.chain_id)}
    status.update(block_summary(w3, "latest"))
    status["gasPriceWei"] = safe_int(w3.eth.gas_price)
    if address:
        if not Web3.is_address(address):
            raise ClientError(f"invalid address: {address}")
        checksum = Web3.to_checksum_address(address)
        status["address"] = checksum
        status["balanceEth"] = str(wei_to_eth(w3.eth.get_balance(checksum)))
        status["nonce"] = w3.eth.get_transaction_count(checksum)
    return status


def tx_summary(w3: Web3, tx_hash: str) -> Dict:
    """A transaction by hash, plus its receipt once mined."""
    try:
        tx = w3.eth.get_transaction(tx_hash)
    except TransactionNotFound:
        raise ClientError(f"transaction not found: {tx_hash}")

    summary = {
        "hash": Web3.to_hex(tx["hash"]),
        "from": tx["from"],
        "to": tx.get("to"),
        "valueEth": str(wei_to_eth(tx["value"])),
        "nonce": tx["nonce"],
        "gas": tx["gas"],
        "blockNumber": tx.get("blockNumber"),
    }
    if tx.get("blockNumber") is None:
        summary["status"] = "pending"
        return summary

    receipt = w3.eth.get_transaction_receipt(tx_hash)
    summary["status"] = "success" if receipt.get("status") == 1 else "reverted"
    summary["gasUsed"] = receipt["gasUsed"]
    summary["contractAddress"] = receipt.get("contractAddress")
    return summary


def transfer_eth(w3: Web3, acct, to: str, value_wei: int):
    """Send a plain value transfer, wait for it, return (tx_hash, receipt)."""
    if not Web3.is_address(to):
        raise ClientError(f"invalid recipient address: {to}")
    if value_wei <= 0:
        raise ClientError("transfer amount must be positive")

    tx = base_tx(w3, acct)
    tx.update({
        "to": Web3.to_checksum_address(to),
        "value": int(value_wei),
        "gas": GAS_LIMIT_TRANSFER,
    })
    worst_fee = tx.get("maxFeePerGas", tx.get("gasPrice", 0))
    balance = w3.eth.get_balance(acct.address)
    if balance < value_wei + worst_fee * GAS_LIMIT_TRANSFER:
        raise ClientError(
            f"insufficient balance: {wei_to_eth(balance)} ETH, "
            f"need≈{wei_to_eth(value_wei + worst_fee * GAS_LIMIT_TRANSFER)} ETH"
        )

    tx_hash = sign_and_send(w3, acct, tx)
    print(f"  {acct.address} -> {tx['to']}  value={wei_to_eth(value_wei)} ETH  nonce={tx['nonce']}")
    print(f"  transfer tx: {tx_hash}")
    return tx_hash, wait_for_receipt(w3, tx_hash)


# ----------------------------
# Commands
# ----------------------------

def cmd_status(w3: Web3, args, private_key: str):
    address = args.address
    if not address and private_key:
        address = load_account(private_key).address
    for key, value in network_status(w3, address).items():
        print(f"  {key:<17} {value}")


def cmd_deploy(w3: Web3, args, private_key: str):
    acct = load_account(private_key)
    abi, bytecode = load_artifacts(args.build_dir)
    result = deploy_counter(w3, acct, abi, bytecode)
    print("\nSimpleCounter deployed!")
    print(f"  Address:  {result.address}")
    print(f"  Block:    {result.block_number}")
    print(f"  Gas used: {result.gas_used:,}")


def cmd_count(w3: Web3, args, private_key: str):
    abi, _bytecode = load_artifacts(args.build_dir)
    contract = counter_contract(w3, abi, _require_address(args))
    print(f"  count: {get_count(contract)}")


def cmd_change(w3: Web3, args, private_key: str):
    acct = load_account(private_key)
    abi, _bytecode = load_artifacts(args.build_dir)
    contract = counter_contract(w3, abi, _require_address(args))

    before = get_count(contract)
    print(f"  count before: {before}")
    _tx_hash, receipt = send_counter_tx(w3, acct, contract, args.command)
    after = get_count(contract)
    print(f"  mined in block {receipt['blockNumber']}, gas used {receipt['gasUsed']:,}")
    print(f"  count after:  {after}")


def cmd_events(w3: Web3, args, private_key: str):
    abi, _bytecode = load_artifacts(args.build_dir)
    contract = counter_contract(w3, abi, _require_address(args))
    events = query_count_events(w3, contract, from_block=args.from_block)
    if not events:
        print(f"  No {COUNT_EVENT} events since block {args.from_block}.")
    for ev in events:
        print(f"  block={ev['blockNumber']}  count={ev['newCount']}  tx={ev['txHash']}")


def cmd_block(w3: Web3, args, private_key: str):
    block_id = args.block
    if block_id != "latest":
        try:
            block_id = int(block_id)
        except ValueError:
            raise ClientError(f"--block must be a number or 'latest', got {args.block!r}")
    for key, value in block_summary(w3, block_id).items():
        print(f"  {key:<17} {value}")


def cmd_tx(w3: Web3, args, private_key: str):
    if not args.tx_hash:
        raise ClientError("--tx-hash is required for 'tx'")
    for key, value in tx_summary(w3, args.tx_hash).items():
        print(f"  {key:<17} {value}")


def cmd_transfer(w3: Web3, args, private_key: str):
    if not args.to or args.amount_eth is None:
        raise ClientError("--to and --amount-eth are required for 'transfer'")
    acct = load_account(private_key)
    _tx_hash, receipt = transfer_eth(w3, acct, args.to, eth_to_wei(args.amount_eth))
    print(f"  mined in block {receipt['blockNumber']}, gas used {receipt['gasUsed']:,}")


def _require_address(args) -> str:
    if not args.address:
        raise ClientError(f"--address is required for '{args.command}'")
    return args.address


COMMANDS = {
    "status": cmd_status,
    "deploy": cmd_deploy,
    "count": cmd_count,
    "increment": cmd_change,
    "decrement": cmd_change,
    "events": cmd_events,
    "block": cmd_block,
    "tx": cmd_tx,
    "transfer": cmd_transfer,
}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Deploy and interact with the SimpleCounter contract.")
    p.add_argument("command", choices=sorted(COMMANDS), help="Action to perform")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help=f"YAML config (default: {DEFAULT_CONFIG_PATH})")
    p.add_argument("--network", default=DEFAULT_NETWORK, help=f"Network name in the config (default: {DEFAULT_NETWORK})")
    p.add_argument("--rpc", default=None, help="RPC URL; overrides the config's rpc_url")
    p.add_argument("--prompt-key", action="store_true", help="Prompt for the private key via hidden input")
    p.add_argument("--address", default=None, help="Deployed contract address (or account address for status)")
    p.add_argument("--from-block", type=int, default=0, help="First block for the events query (default 0)")
    p.add_argument("--block", default="latest", help="Block number for 'block' (default: latest)")
    p.add_argument("--tx-hash", default=None, help="Transaction hash for 'tx'")
    p.add_argument("--to", default=None, help="Recipient address for 'transfer'")
    p.add_argument("--amount-eth", type=Decimal, default=None, help="ETH amount for 'transfer'")
    p.add_argument("--build-dir", type=Path, default=BUILD_DIR, help=f"Artifact directory (default: {BUILD_DIR})")
    return p


def run(args) -> None:
    config = ClientConfig()
    if args.config.exists():
        config = ClientConfig.load(args.config)
    elif not args.rpc:
        raise ClientError(f"config not found: {args.config} (or pass --rpc)")

    if args.rpc:
        network = NetworkConfig(rpc_url=args.rpc)
    else:
        network = config.network(args.network)

    private_key = config.private_key
    if args.prompt_key:
        private_key = getpass("private key> ").strip()

    print("\n" + "=" * 60)
    print("  SimpleCounter Client")
    print("=" * 60)
    print(f"\n  RPC:     {network.rpc_url}")
    print(f"  Command: {args.command}\n")

    w3 = setup_web3(network.rpc_url, network.chain_id)
    COMMANDS[args.command](w3, args, private_key)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        run(args)
    except (ClientError, OSError, ValueError, yaml.YAMLError, Web3Exception) as e:
        die(str(e))
    return 0


if __name__ == "__main__":
    sys.exit(main())
