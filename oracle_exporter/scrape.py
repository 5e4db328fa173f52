import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .config import Bech32Prefixes
from .denom import DenominationConfig
from .errors import QueryError
from .metrics import MetricSample, node_up, render, scrape_errors_total

logger = logging.getLogger(__name__)

BOND_STATUSES = ('BOND_STATUS_BONDED', 'BOND_STATUS_UNBONDING', 'BOND_STATUS_UNBONDED')
TARGET_PARAMS = ('valoper', 'address')


@dataclass(frozen=True)
class Reading:
    """One value read from the node; ``amount`` marks raw on-chain amounts."""
    name: str
    value: float
    labels: Dict[str, str] = field(default_factory=dict)
    amount: bool = False


@dataclass(frozen=True)
class Query:
    name: str
    fetch: Callable[..., Awaitable[List[Reading]]]


@dataclass(frozen=True)
class QueryResult:
    query: str
    readings: Tuple[Reading, ...] = ()
    error: Optional[QueryError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ScrapeRequest:
    category: str
    target: str
    # account address behind the target; the target itself for wallets
    account: str = ''


def _coins(name: str, coins) -> List[Reading]:
    return [Reading(name, c.amount, {'chain_denom': c.denom}, amount=True) for c in coins]


async def fetch_balances(node, request: ScrapeRequest) -> List[Reading]:
    return _coins('umee_wallet_balance', await node.balances(request.account or request.target))


async def fetch_operator_balances(node, request: ScrapeRequest) -> List[Reading]:
    return _coins('umee_validator_balance', await node.balances(request.account))


async def fetch_delegations(node, request: ScrapeRequest) -> List[Reading]:
    totals: Dict[str, float] = {}
    for coin in await node.delegations(request.account or request.target):
        totals[coin.denom] = totals.get(coin.denom, 0.0) + coin.amount
    return [
        Reading('umee_wallet_delegations', amount, {'chain_denom': denom}, amount=True)
        for denom, amount in totals.items()
    ]


async def fetch_delegator_rewards(node, request: ScrapeRequest) -> List[Reading]:
    return _coins('umee_wallet_rewards', await node.delegator_rewards(request.account or request.target))


async def fetch_validator(node, request: ScrapeRequest) -> List[Reading]:
    validator = await node.validator(request.target)
    moniker = {'moniker': validator.moniker}
    readings = [
        Reading('umee_validator_tokens', validator.tokens, moniker, amount=True),
        Reading('umee_validator_delegator_shares', validator.delegator_shares, moniker, amount=True),
        Reading('umee_validator_commission_rate', validator.commission_rate, moniker),
        Reading('umee_validator_jailed', 1.0 if validator.jailed else 0.0, moniker),
    ]
    for status in BOND_STATUSES:
        readings.append(Reading(
            'umee_validator_status',
            1.0 if validator.status == status else 0.0,
            {'moniker': validator.moniker, 'status': status},
        ))
    return readings


async def fetch_validator_commission(node, request: ScrapeRequest) -> List[Reading]:
    return _coins('umee_validator_commission', await node.validator_commission(request.target))


async def fetch_validator_rewards(node, request: ScrapeRequest) -> List[Reading]:
    return _coins('umee_validator_rewards', await node.validator_rewards(request.target))


async def fetch_oracle_miss_counter(node, request: ScrapeRequest) -> List[Reading]:
    return [Reading('umee_oracle_miss_counter', float(await node.oracle_miss_counter(request.target)))]


BALANCES = Query('balances', fetch_balances)
OPERATOR_BALANCES = Query('balances', fetch_operator_balances)
DELEGATIONS = Query('delegations', fetch_delegations)
DELEGATOR_REWARDS = Query('delegator_rewards', fetch_delegator_rewards)
VALIDATOR = Query('validator', fetch_validator)
VALIDATOR_COMMISSION = Query('validator_commission', fetch_validator_commission)
VALIDATOR_REWARDS = Query('validator_rewards', fetch_validator_rewards)
ORACLE_MISS_COUNTER = Query('oracle_miss_counter', fetch_oracle_miss_counter)

# category -> (bech32 prefix kind the target must carry, queries)
CATEGORIES: Dict[str, Tuple[str, Tuple[Query, ...]]] = {
    'general': ('validator', (
        VALIDATOR, VALIDATOR_COMMISSION, VALIDATOR_REWARDS, OPERATOR_BALANCES, ORACLE_MISS_COUNTER,
    )),
    'validator': ('validator', (VALIDATOR, VALIDATOR_COMMISSION, VALIDATOR_REWARDS, OPERATOR_BALANCES)),
    'wallet': ('account', (BALANCES, DELEGATIONS, DELEGATOR_REWARDS)),
    'oracle': ('validator', (ORACLE_MISS_COUNTER,)),
}


def parse_request(category: str, params: Mapping[str, str], prefixes: Bech32Prefixes) -> ScrapeRequest:
    """Build a ScrapeRequest from query parameters; ValueError if unusable."""
    if category not in CATEGORIES:
        raise KeyError(category)
    target = ''
    for param in TARGET_PARAMS:
        target = (params.get(param) or '').strip()
        if target:
            break
    if not target:
        raise ValueError(f"missing target: pass one of {', '.join(TARGET_PARAMS)}")

    kind, _ = CATEGORIES[category]
    if kind == 'validator':
        account = prefixes.operator_account(target)
    else:
        prefixes.decode(target, kind)
        account = target
    return ScrapeRequest(category=category, target=target, account=account)


def fold(results: Sequence[QueryResult], target: str,
         denom: DenominationConfig) -> Tuple[List[MetricSample], List[QueryError]]:
    """Turn per-query results into samples plus the list of failures."""
    samples: List[MetricSample] = []
    failures: List[QueryError] = []
    for result in results:
        if not result.ok:
            failures.append(result.error)
            continue
        for reading in result.readings:
            labels = {'address': target, 'query': result.query}
            value = reading.value
            if reading.amount:
                labels['denom'] = denom.symbol
                value = denom.scale(value)
            labels.update(reading.labels)
            samples.append(MetricSample(reading.name, labels, value))
    return samples, failures


class Scraper:
    def __init__(self, node_client, denom: DenominationConfig, prefixes: Bech32Prefixes,
                 query_timeout: Optional[float] = None):
        self.node_client = node_client
        self.denom = denom
        self.prefixes = prefixes
        self.query_timeout = query_timeout

    async def run_query(self, query: Query, request: ScrapeRequest) -> QueryResult:
        try:
            readings = await asyncio.wait_for(
                query.fetch(self.node_client, request), timeout=self.query_timeout
            )
        except Exception as e:
            # UpstreamError, timeouts and anything else stay local to this query
            return QueryResult(query.name, error=QueryError(query.name, request.target, e))
        return QueryResult(query.name, readings=tuple(readings))

    async def scrape(self, request: ScrapeRequest) -> List[MetricSample]:
        _, queries = CATEGORIES[request.category]
        start = time.perf_counter()

        results = await asyncio.gather(*(self.run_query(q, request) for q in queries))
        samples, failures = fold(results, request.target, self.denom)

        for failure in failures:
            logger.error(f"Error querying {failure.query} for {failure.target}: {failure.cause}")
            scrape_errors_total.labels(query=failure.query, target=failure.target).inc()

        duration = time.perf_counter() - start
        samples.append(MetricSample(
            'umee_exporter_scrape_duration_seconds',
            {'address': request.target, 'category': request.category},
            duration
        ))
        logger.debug(
            f"Scraped {request.category} for {request.target}: "
            f"{len(results) - len(failures)}/{len(results)} queries ok in {duration:.3f}s"
        )
        return samples

    async def handle(self, request: ScrapeRequest) -> bytes:
        samples = await self.scrape(request)
        return render(samples, scrape_errors_total, node_up)
