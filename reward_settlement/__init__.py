"""
Reward Settlement Engine

Off-chain epoch settlement service for the intent clearing protocol:
- Lock position reconciliation from indexed tokenomics events
- Trading volume and staking reward computation
- Cumulative per-asset Merkle distributions with account proofs
"""

__version__ = "0.1.0"
__author__ = "Reward Settlement Team"
