from dataclasses import dataclass, field
from typing import Dict, Iterable

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

CONTENT_TYPE = 'text/plain; version=0.0.4'

# Process-wide metrics
node_up = Gauge('umee_exporter_node_up', 'Node REST endpoint health status (1 = healthy, 0 = unhealthy)')
scrape_errors_total = Counter(
    'umee_exporter_scrape_errors_total',
    'Total number of node queries that failed during a scrape',
    ['query', 'target']
)

METRIC_HELP = {
    'umee_wallet_balance': 'Balance of the wallet, in display units',
    'umee_wallet_delegations': 'Tokens delegated by the wallet, in display units',
    'umee_wallet_rewards': 'Pending staking rewards of the wallet, in display units',
    'umee_validator_tokens': 'Tokens bonded to the validator, in display units',
    'umee_validator_delegator_shares': 'Delegator shares of the validator, in display units',
    'umee_validator_commission_rate': 'Commission rate of the validator',
    'umee_validator_jailed': 'Whether the validator is jailed (1 = jailed, 0 = not jailed)',
    'umee_validator_status': 'Bond status of the validator (1 for the current status)',
    'umee_validator_commission': 'Unclaimed commission of the validator, in display units',
    'umee_validator_rewards': 'Outstanding rewards of the validator, in display units',
    'umee_validator_balance': 'Balance of the validator operator account, in display units',
    'umee_oracle_miss_counter': 'Number of missed oracle votes in the current slash window',
    'umee_exporter_scrape_duration_seconds': 'Time the scrape took to complete',
}


@dataclass(frozen=True)
class MetricSample:
    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    value: float = 0.0


def render(samples: Iterable[MetricSample], *collectors) -> bytes:
    """Serialize samples (plus shared collectors) into the exposition format.

    A fresh registry is built per call so nothing leaks between scrapes.
    """
    registry = CollectorRegistry()
    gauges: Dict[str, Gauge] = {}
    for sample in samples:
        gauge = gauges.get(sample.name)
        if gauge is None:
            gauge = Gauge(
                sample.name,
                METRIC_HELP.get(sample.name, sample.name),
                list(sample.labels),
                registry=registry
            )
            gauges[sample.name] = gauge
        if sample.labels:
            gauge.labels(**sample.labels).set(sample.value)
        else:
            gauge.set(sample.value)
    for collector in collectors:
        registry.register(collector)
    return generate_latest(registry)
