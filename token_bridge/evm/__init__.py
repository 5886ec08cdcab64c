"""Wormhole token bridge on EVM chains."""

from token_bridge.evm.adapter import EVMCall, EVMChainAdapter, parse_core_bridge_logs

__all__ = ["EVMCall", "EVMChainAdapter", "parse_core_bridge_logs"]
