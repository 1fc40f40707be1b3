"""
Hub chain reader for the gauge and reward distributor contracts.
Provides the epoch parameters and reward distributor update counters.
"""

from typing import Any, Optional

import structlog
from web3 import AsyncWeb3
from web3.providers import AsyncHTTPProvider
from eth_utils import to_checksum_address

from reward_settlement.core.config import settings
from reward_settlement.core.exceptions import ChainReadError


logger = structlog.get_logger(__name__)


GAUGE_ABI = [
    {
        "inputs": [],
        "name": "genesisEpoch",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "EPOCH_DURATION",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

REWARD_DISTRIBUTOR_ABI = [
    {
        "inputs": [{"internalType": "address", "name": "token", "type": "address"}],
        "name": "rewards",
        "outputs": [
            {"internalType": "address", "name": "token", "type": "address"},
            {"internalType": "bytes32", "name": "merkleRoot", "type": "bytes32"},
            {"internalType": "bytes32", "name": "proof", "type": "bytes32"},
            {"internalType": "uint256", "name": "updateCount", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
]


class ChainReader:
    """Read-only access to the hub tokenomics contracts."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        gauge_address: Optional[str] = None,
        reward_distributor_address: Optional[str] = None,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.rpc_url = rpc_url or settings.chain_rpc_url
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(self.rpc_url))
        self.gauge = self.w3.eth.contract(
            address=to_checksum_address(gauge_address or settings.gauge_address),
            abi=GAUGE_ABI,
        )
        self.reward_distributor = self.w3.eth.contract(
            address=to_checksum_address(reward_distributor_address or settings.reward_distributor_address),
            abi=REWARD_DISTRIBUTOR_ABI,
        )
        self.logger = logger.bind(service="chain_reader")

    async def _call(self, name: str, call: Any) -> Any:
        try:
            return await call.call(block_identifier="latest")
        except Exception as e:
            self.logger.error("Contract read failed", method=name, error=str(e))
            raise ChainReadError(f"Contract read failed: {name}", {"method": name, "error": str(e)}) from e

    async def get_genesis_epoch(self) -> int:
        return int(await self._call("genesisEpoch", self.gauge.functions.genesisEpoch()))

    async def get_epoch_duration(self) -> int:
        return int(await self._call("EPOCH_DURATION", self.gauge.functions.EPOCH_DURATION()))

    async def get_reward_distributor_update_count(self, asset: str) -> int:
        """Update count of the asset's distribution on the reward distributor."""
        reward = await self._call(
            "rewards",
            self.reward_distributor.functions.rewards(to_checksum_address(asset)),
        )
        return int(reward[3])
