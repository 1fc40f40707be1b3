"""
Tests for settings and protocol configuration loading.
"""

import json

import pytest
from pydantic import ValidationError

from reward_settlement.core.config import (
    DatabaseConfig,
    Settings,
    TokenStakingReward,
    load_protocol_config,
)
from reward_settlement.core.exceptions import ConfigurationError


PROTOCOL = {
    "hub": {
        "domain": "25327",
        "assets": {
            "CLEAR": {
                "symbol": "CLEAR",
                "address": "0xC1C1C1C1C1C1C1C1C1C1C1C1C1C1C1C1C1C1C1C1",
                "decimals": 18,
                "price": {"coingecko_id": "clear"},
            }
        },
    },
    "chains": {
        "1": {
            "assets": {
                "USDC": {
                    "symbol": "USDC",
                    "address": "0xA0A0A0A0A0A0A0A0A0A0A0A0A0A0A0A0A0A0A0A0",
                    "decimals": 6,
                    "price": {"coingecko_id": "usd-coin", "is_stable": True},
                }
            }
        }
    },
    "rewards": {
        "clear_asset_address": "0xc1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1",
        "volume": {
            "tokens": [
                {
                    "address": "0xc1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1",
                    "epoch_volume_reward": 100000000000000000000000,
                    "base_reward_dbps": 10,
                    "max_bps_usd_volume_cap": 50000000,
                }
            ]
        },
        "staking": {
            "tokens": [
                {
                    "address": "0xc1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1c1",
                    "apy": [{"term": 0, "apy_bps": 500}, {"term": 3, "apy_bps": 1000}],
                }
            ]
        },
    },
}


def write_config(tmp_path, content):
    path = tmp_path / "protocol.json"
    path.write_text(content if isinstance(content, str) else json.dumps(content))
    return str(path)


def test_load_protocol_config(tmp_path):
    config = load_protocol_config(write_config(tmp_path, PROTOCOL))

    assert config.hub.domain == "25327"
    assert config.rewards.volume.tokens[0].epoch_volume_reward == 100_000 * 10 ** 18
    assert [tier.apy_bps for tier in config.rewards.staking.tokens[0].apy] == [500, 1000]


def test_asset_lookups_are_case_insensitive(tmp_path):
    config = load_protocol_config(write_config(tmp_path, PROTOCOL))

    assert config.hub_asset_configs()["0x" + "c1" * 20].symbol == "CLEAR"
    assert config.domain_asset_configs("1")["0x" + "a0" * 20].decimals == 6
    assert config.domain_asset_configs("10") == {}


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigurationError) as exc_info:
        load_protocol_config(str(tmp_path / "missing.json"))

    assert exc_info.value.code == "CONFIGURATION_ERROR"


def test_invalid_document_raises(tmp_path):
    document = json.loads(json.dumps(PROTOCOL))
    del document["hub"]

    with pytest.raises(ConfigurationError):
        load_protocol_config(write_config(tmp_path, document))


def test_malformed_json_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        load_protocol_config(write_config(tmp_path, "{not json"))


def test_apy_tiers_must_be_sorted():
    with pytest.raises(ValidationError):
        TokenStakingReward(address="0x" + "c1" * 20, apy=[{"term": 3, "apy_bps": 1000}, {"term": 0, "apy_bps": 500}])


def test_settings_validators():
    assert Settings(log_level="debug").log_level == "DEBUG"

    with pytest.raises(ValidationError):
        Settings(network="devnet")
    with pytest.raises(ValidationError):
        Settings(environment="qa")


def test_async_database_url(monkeypatch):
    from reward_settlement.core import config

    monkeypatch.setattr(config.settings, "database_url", "postgresql://u:p@db:5432/rewards")

    assert DatabaseConfig.get_database_url() == "postgresql+asyncpg://u:p@db:5432/rewards"
    assert DatabaseConfig.get_database_url(async_driver=False) == "postgresql://u:p@db:5432/rewards"
