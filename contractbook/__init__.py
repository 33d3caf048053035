"""
Contractbook Verification Pipeline

Proves that a claimed Solidity source produced the runtime bytecode living at
an on-chain address, publishes that proof to a block explorer, and keeps a
backlog of agent deployments moving through verification and a safety audit.
"""

__version__ = "0.1.0"
