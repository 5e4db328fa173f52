import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from .denom import DenomMetadata, DenomUnit
from .errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Coin:
    denom: str
    amount: float


@dataclass(frozen=True)
class ValidatorInfo:
    operator_address: str
    moniker: str
    tokens: float
    delegator_shares: float
    commission_rate: float
    jailed: bool
    status: str


def _dig(data: Any, *keys: str, endpoint: str = None) -> Any:
    value = data
    for key in keys:
        try:
            value = value[key]
        except (KeyError, TypeError, IndexError):
            raise UpstreamError(f"malformed response: missing {'.'.join(keys)}", endpoint=endpoint)
    return value


def _mapping(value: Any, endpoint: str = None) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise UpstreamError(f"malformed response: expected an object, got {value!r}", endpoint=endpoint)
    return value


def _number(value: Any, endpoint: str = None) -> float:
    # Int and Dec amounts both arrive as strings
    try:
        return float(value)
    except (TypeError, ValueError):
        raise UpstreamError(f"malformed amount: {value!r}", endpoint=endpoint)


def parse_coins(items: Any, endpoint: str = None) -> List[Coin]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise UpstreamError("malformed response: expected a list of coins", endpoint=endpoint)
    return [
        Coin(
            denom=_dig(item, 'denom', endpoint=endpoint),
            amount=_number(_dig(item, 'amount', endpoint=endpoint), endpoint=endpoint),
        )
        for item in items
    ]


class NodeClient:
    """Client for a Cosmos SDK node's REST gateway.

    One ClientSession is kept for the lifetime of the process and shared by
    every scrape.  Each request is bounded by ``timeout`` seconds; any
    transport failure, timeout, non-200 status or malformed payload surfaces
    as UpstreamError.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, limit: int = 1000,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.limit = limit
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        session = self._get_session()
        try:
            async with session.get(url, params=params, timeout=self.timeout) as response:
                if response.status != 200:
                    body = await response.text()
                    raise UpstreamError(
                        f"node returned HTTP {response.status}: {body[:200]}", endpoint=path
                    )
                return await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise UpstreamError(f"request timed out after {self.timeout.total}s", endpoint=path)
        except aiohttp.ClientError as e:
            raise UpstreamError(f"request failed: {e}", endpoint=path)
        except ValueError as e:
            raise UpstreamError(f"malformed JSON: {e}", endpoint=path)

    async def denoms_metadata(self) -> List[DenomMetadata]:
        path = '/cosmos/bank/v1beta1/denoms_metadata'
        data = await self.get_json(path, params={'pagination.limit': str(self.limit)})
        registry = []
        for entry in _dig(data, 'metadatas', endpoint=path) or []:
            entry = _mapping(entry, endpoint=path)
            units = tuple(
                DenomUnit(
                    denom=_dig(unit, 'denom', endpoint=path),
                    exponent=int(_number(_mapping(unit, endpoint=path).get('exponent', 0), endpoint=path)),
                )
                for unit in entry.get('denom_units') or []
            )
            registry.append(DenomMetadata(
                display=entry.get('display', ''),
                units=units,
                base=entry.get('base', ''),
            ))
        return registry

    async def balances(self, address: str) -> List[Coin]:
        path = f'/cosmos/bank/v1beta1/balances/{address}'
        data = await self.get_json(path, params={'pagination.limit': str(self.limit)})
        return parse_coins(_dig(data, 'balances', endpoint=path), endpoint=path)

    async def delegations(self, address: str) -> List[Coin]:
        path = f'/cosmos/staking/v1beta1/delegations/{address}'
        data = await self.get_json(path, params={'pagination.limit': str(self.limit)})
        responses = _dig(data, 'delegation_responses', endpoint=path) or []
        return parse_coins([_dig(r, 'balance', endpoint=path) for r in responses], endpoint=path)

    async def delegator_rewards(self, address: str) -> List[Coin]:
        path = f'/cosmos/distribution/v1beta1/delegators/{address}/rewards'
        data = await self.get_json(path)
        return parse_coins(_dig(data, 'total', endpoint=path), endpoint=path)

    async def validator(self, valoper: str) -> ValidatorInfo:
        path = f'/cosmos/staking/v1beta1/validators/{valoper}'
        data = await self.get_json(path)
        validator = _mapping(_dig(data, 'validator', endpoint=path), endpoint=path)
        return ValidatorInfo(
            operator_address=_dig(validator, 'operator_address', endpoint=path),
            moniker=_mapping(validator.get('description') or {}, endpoint=path).get('moniker', ''),
            tokens=_number(_dig(validator, 'tokens', endpoint=path), endpoint=path),
            delegator_shares=_number(_dig(validator, 'delegator_shares', endpoint=path), endpoint=path),
            commission_rate=_number(
                _dig(validator, 'commission', 'commission_rates', 'rate', endpoint=path),
                endpoint=path,
            ),
            jailed=bool(validator.get('jailed', False)),
            status=validator.get('status', ''),
        )

    async def validator_commission(self, valoper: str) -> List[Coin]:
        path = f'/cosmos/distribution/v1beta1/validators/{valoper}/commission'
        data = await self.get_json(path)
        return parse_coins(_dig(data, 'commission', 'commission', endpoint=path), endpoint=path)

    async def validator_rewards(self, valoper: str) -> List[Coin]:
        path = f'/cosmos/distribution/v1beta1/validators/{valoper}/outstanding_rewards'
        data = await self.get_json(path)
        return parse_coins(_dig(data, 'rewards', 'rewards', endpoint=path), endpoint=path)

    async def oracle_miss_counter(self, valoper: str) -> int:
        path = f'/umee/oracle/v1/validators/{valoper}/miss'
        data = await self.get_json(path)
        return int(_number(_dig(data, 'miss_counter', endpoint=path), endpoint=path))

    async def latest_block_height(self) -> int:
        path = '/cosmos/base/tendermint/v1beta1/blocks/latest'
        data = await self.get_json(path)
        return int(_number(_dig(data, 'block', 'header', 'height', endpoint=path), endpoint=path))

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            logger.info("Closing node session...")
            await self._session.close()
