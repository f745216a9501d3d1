"""On-chain verification of contract deployments.

JSON-RPC lookups go through web3 per supported chain; source-code
verification status comes from the chain's Etherscan-family explorer and is
reported as a detail, never as a reason to reject.
"""

from __future__ import annotations

import logging
import re

import httpx
import requests
from web3.exceptions import BlockNotFound, TransactionNotFound, Web3Exception

from shardledger.config import settings
from shardledger.connectors.verification import (
    VerificationResult,
    rejected,
    unavailable,
    verified,
)

logger = logging.getLogger(__name__)

PROVIDER = "chain"

CHAIN_IDS = {
    "ethereum": 1,
    "base": 8453,
    "arbitrum": 42161,
    "optimism": 10,
}

EXPLORER_APIS = {
    "ethereum": "https://api.etherscan.io/api",
    "base": "https://api.basescan.org/api",
    "arbitrum": "https://api.arbiscan.io/api",
    "optimism": "https://api-optimistic.etherscan.io/api",
}

_TX_HASH_RE = re.compile(r"0x[0-9a-fA-F]{64}")
_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")

_NOT_VERIFIED_MSG = "Contract source code not verified"

# RPC transport or node-side failures: retry later. Inputs are shape-checked
# before any call, so a ValueError here is a JSON-RPC error from the node.
_TRANSIENT_ERRORS = (Web3Exception, requests.exceptions.RequestException, OSError, ValueError)


def _rpc_url(chain: str) -> str:
    return {
        "ethereum": settings.ethereum_rpc_url,
        "base": settings.base_rpc_url,
        "arbitrum": settings.arbitrum_rpc_url,
        "optimism": settings.optimism_rpc_url,
    }[chain]


def _explorer_key(chain: str) -> str:
    return {
        "ethereum": settings.etherscan_api_key,
        "base": settings.basescan_api_key,
        "arbitrum": settings.arbiscan_api_key,
        "optimism": settings.optimism_explorer_api_key,
    }[chain]


def _get_web3(chain: str):
    """Get a Web3 instance for the chain's RPC endpoint."""
    from web3 import Web3

    return Web3(
        Web3.HTTPProvider(
            _rpc_url(chain),
            request_kwargs={"timeout": settings.verifier_timeout_sec},
        )
    )


def check_source_verified(chain: str, contract_address: str) -> bool | None:
    """True/False from the explorer's getabi call; None when the explorer can't be reached."""
    try:
        resp = httpx.get(
            EXPLORER_APIS[chain],
            params={
                "module": "contract",
                "action": "getabi",
                "address": contract_address,
                "apikey": _explorer_key(chain),
            },
            timeout=settings.verifier_timeout_sec,
        )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Explorer lookup for %s on %s failed: %s", contract_address, chain, e)
        return None
    data = resp.json()
    return data.get("status") == "1" and data.get("result") != _NOT_VERIFIED_MSG


def verify_contract_deployment(
    chain: str,
    tx_hash: str,
    contract_address: str,
    deployer_address: str,
) -> VerificationResult:
    """Check that tx_hash deployed contract_address from deployer_address and code is live."""
    chain = chain.lower()
    if chain not in CHAIN_IDS:
        return rejected(PROVIDER, f"unsupported chain: {chain}")
    if not _TX_HASH_RE.fullmatch(tx_hash or ""):
        return rejected(PROVIDER, f"malformed transaction hash: {tx_hash!r}")
    for label, address in (("contract", contract_address), ("deployer", deployer_address)):
        if not _ADDRESS_RE.fullmatch(address or ""):
            return rejected(PROVIDER, f"malformed {label} address: {address!r}")

    w3 = _get_web3(chain)
    try:
        tx = w3.eth.get_transaction(tx_hash)
        receipt = w3.eth.get_transaction_receipt(tx_hash)
    except TransactionNotFound:
        return rejected(PROVIDER, f"transaction {tx_hash} not found on {chain}")
    except _TRANSIENT_ERRORS as e:
        logger.warning("RPC error on %s for %s: %s", chain, tx_hash, e)
        return unavailable(PROVIDER, f"rpc error: {type(e).__name__}")

    if receipt.get("status") != 1:
        return rejected(PROVIDER, f"transaction {tx_hash} reverted")
    sender = (receipt.get("from") or tx.get("from") or "").lower()
    if sender != deployer_address.lower():
        return rejected(PROVIDER, f"deployer mismatch: {sender} != {deployer_address.lower()}")
    created = (receipt.get("contractAddress") or "").lower()
    if created != contract_address.lower():
        return rejected(PROVIDER, f"transaction did not create {contract_address.lower()}")

    try:
        code = w3.eth.get_code(w3.to_checksum_address(contract_address))
        block = w3.eth.get_block(receipt["blockNumber"])
    except BlockNotFound:
        return rejected(PROVIDER, f"block {receipt['blockNumber']} not found on {chain}")
    except _TRANSIENT_ERRORS as e:
        logger.warning("RPC error on %s for %s: %s", chain, contract_address, e)
        return unavailable(PROVIDER, f"rpc error: {type(e).__name__}")

    if not code:
        return rejected(PROVIDER, f"no code at {contract_address.lower()} (self-destructed?)")

    source_verified = check_source_verified(chain, contract_address)
    logger.info(
        "Verified deployment of %s on %s (block %d, source verified: %s)",
        created, chain, receipt["blockNumber"], source_verified,
    )
    return verified(
        PROVIDER,
        chain_id=CHAIN_IDS[chain],
        block_number=receipt["blockNumber"],
        block_timestamp=block.get("timestamp"),
        source_verified=source_verified,
    )
