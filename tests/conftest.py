import asyncio

import pytest
from bech32 import bech32_encode, convertbits
from prometheus_client import REGISTRY
from prometheus_client.parser import text_string_to_metric_families

from oracle_exporter.config import Bech32Prefixes
from oracle_exporter.denom import DenomMetadata, DenomUnit, DenominationConfig, ScaleSource
from oracle_exporter.errors import UpstreamError
from oracle_exporter.node import Coin, ValidatorInfo


def account_address(seed, prefix='umee'):
    """Valid bech32 address over 20 bytes derived from ``seed``."""
    return bech32_encode(prefix, convertbits(bytes((seed + i) % 256 for i in range(20)), 8, 5))


def valoper_address(seed):
    return account_address(seed, prefix='umeevaloper')


VALOPER = valoper_address(1)
OPERATOR_ACCOUNT = account_address(1)
WALLET = account_address(100)


class FakeNode:
    """In-memory stand-in for NodeClient; ``failures`` maps method -> exception."""

    def __init__(self, registry=None, failures=None, delays=None):
        self.registry = registry if registry is not None else []
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls = []
        self.balance_addresses = []

    async def _answer(self, method, value):
        self.calls.append(method)
        if method in self.delays:
            await asyncio.sleep(self.delays[method])
        if method in self.failures:
            raise self.failures[method]
        return value

    async def denoms_metadata(self):
        return await self._answer('denoms_metadata', self.registry)

    async def balances(self, address):
        self.balance_addresses.append(address)
        return await self._answer('balances', [Coin('uumee', 2500000.0), Coin('ibc/27394FB0', 10.0)])

    async def delegations(self, address):
        return await self._answer('delegations', [Coin('uumee', 1000000.0), Coin('uumee', 500000.0)])

    async def delegator_rewards(self, address):
        return await self._answer('delegator_rewards', [Coin('uumee', 1234.5)])

    async def validator(self, valoper):
        return await self._answer('validator', ValidatorInfo(
            operator_address=valoper,
            moniker='umee-val',
            tokens=42000000.0,
            delegator_shares=42000000.0,
            commission_rate=0.05,
            jailed=False,
            status='BOND_STATUS_BONDED',
        ))

    async def validator_commission(self, valoper):
        return await self._answer('validator_commission', [Coin('uumee', 0.0)])

    async def validator_rewards(self, valoper):
        return await self._answer('validator_rewards', [Coin('uumee', 3000000.0)])

    async def oracle_miss_counter(self, valoper):
        return await self._answer('oracle_miss_counter', 7)

    async def latest_block_height(self):
        return await self._answer('latest_block_height', 123456)


def umee_registry():
    return [
        DenomMetadata(
            display='uumee',
            units=(DenomUnit('uumee', 0), DenomUnit('umee', 6)),
            base='uumee',
        )
    ]


def error_count(query, target):
    value = REGISTRY.get_sample_value(
        'umee_exporter_scrape_errors_total', {'query': query, 'target': target}
    )
    return value or 0.0


def parse_metrics(text):
    """Return {(name, frozenset(labels)): value} for every sample in the body."""
    samples = {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            samples[(sample.name, frozenset(sample.labels.items()))] = sample.value
    return samples


def sample_names(text):
    return {name for name, _ in parse_metrics(text)}


@pytest.fixture
def prefixes():
    return Bech32Prefixes.from_base('umee')


@pytest.fixture
def umee_denom():
    return DenominationConfig(symbol='umee', coefficient=1000000.0, exponent=6,
                              source=ScaleSource.EXPLICIT_EXPONENT)


@pytest.fixture
def fake_node():
    return FakeNode(registry=umee_registry())


@pytest.fixture
def timeout_error():
    return UpstreamError("request timed out after 10.0s", endpoint='/cosmos/bank/v1beta1/balances')
