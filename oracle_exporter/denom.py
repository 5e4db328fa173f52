"""Startup resolution of the working denomination and its scaling coefficient.

The exporter displays every on-chain amount as ``raw / coefficient``.  The
operator may pin the denomination with ``--denom`` plus either
``--denom-coefficient`` or ``--denom-exponent``; otherwise the node's bank
metadata registry is consulted.  Resolution runs once, before the listener
starts, and the result is never mutated afterwards.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .config import DenomOverrides
from .errors import ConfigError

logger = logging.getLogger(__name__)

AMBIGUOUS_SCALING = "ambiguous denom scaling: supply coefficient or exponent, not both"
NO_METADATA = "no denomination metadata available; provide symbol and coefficient manually"
SYMBOL_NOT_FOUND = "requested denomination symbol not found in node metadata"


class ScaleSource(enum.Enum):
    EXPLICIT_COEFFICIENT = 'explicit-coefficient'
    EXPLICIT_EXPONENT = 'explicit-exponent'
    NODE_DERIVED = 'node-derived'


@dataclass(frozen=True)
class DenomUnit:
    denom: str
    exponent: int


@dataclass(frozen=True)
class DenomMetadata:
    display: str
    units: Tuple[DenomUnit, ...]
    base: str = ''


@dataclass(frozen=True)
class DenominationConfig:
    symbol: str
    coefficient: float
    exponent: Optional[int] = None
    source: ScaleSource = ScaleSource.NODE_DERIVED

    def scale(self, raw_amount: float) -> float:
        return raw_amount / self.coefficient


def power_of_ten(exponent: int) -> float:
    try:
        return float(10 ** exponent)
    except OverflowError:
        raise ConfigError(f"denom exponent {exponent} is too large to scale amounts with")


def _reject_ambiguous(overrides: DenomOverrides) -> Optional[DenominationConfig]:
    if overrides.symbol and overrides.coefficient is not None and overrides.exponent is not None:
        raise ConfigError(AMBIGUOUS_SCALING)
    return None


def _explicit_coefficient(overrides: DenomOverrides) -> Optional[DenominationConfig]:
    if not overrides.symbol or overrides.coefficient is None:
        return None
    logger.info(
        f"Using provided denom {overrides.symbol} and coefficient {overrides.coefficient}"
    )
    return DenominationConfig(
        symbol=overrides.symbol,
        coefficient=overrides.coefficient,
        source=ScaleSource.EXPLICIT_COEFFICIENT,
    )


def _explicit_exponent(overrides: DenomOverrides) -> Optional[DenominationConfig]:
    if not overrides.symbol or overrides.exponent is None:
        return None
    coefficient = power_of_ten(overrides.exponent)
    logger.info(
        f"Using provided denom {overrides.symbol} and exponent {overrides.exponent} "
        f"(calculated coefficient {coefficient})"
    )
    return DenominationConfig(
        symbol=overrides.symbol,
        coefficient=coefficient,
        exponent=overrides.exponent,
        source=ScaleSource.EXPLICIT_EXPONENT,
    )


# Evaluated in order; the first rule returning a config (or raising) wins.
OVERRIDE_RULES: Tuple[Callable[[DenomOverrides], Optional[DenominationConfig]], ...] = (
    _reject_ambiguous,
    _explicit_coefficient,
    _explicit_exponent,
)


def resolve_overrides(overrides: DenomOverrides) -> Optional[DenominationConfig]:
    """Apply the operator override rules; None means the node must be asked."""
    for rule in OVERRIDE_RULES:
        resolved = rule(overrides)
        if resolved is not None:
            return resolved
    return None


def select_from_registry(registry: Sequence[DenomMetadata], symbol: str = '') -> DenominationConfig:
    """Pick the scale for ``symbol`` out of the node's metadata registry.

    Only the first registry entry is considered; when ``symbol`` is empty
    the entry's display unit is adopted.
    """
    if not registry:
        raise ConfigError(NO_METADATA)

    metadata = registry[0]
    if not symbol:
        symbol = metadata.display

    for unit in metadata.units:
        logger.debug(f"Denom info: denom={unit.denom} exponent={unit.exponent}")
        if unit.denom == symbol:
            coefficient = power_of_ten(unit.exponent)
            logger.info(f"Got denom info: denom={symbol} coefficient={coefficient}")
            return DenominationConfig(
                symbol=symbol,
                coefficient=coefficient,
                exponent=unit.exponent,
                source=ScaleSource.NODE_DERIVED,
            )

    raise ConfigError(SYMBOL_NOT_FOUND)


async def resolve(overrides: DenomOverrides, node_client) -> DenominationConfig:
    """Resolve the process-wide denomination.

    Raises ConfigError for unsatisfiable configuration and lets the node
    client's UpstreamError propagate when the registry cannot be fetched.
    """
    resolved = resolve_overrides(overrides)
    if resolved is not None:
        return resolved

    registry: List[DenomMetadata] = await node_client.denoms_metadata()
    return select_from_registry(registry, overrides.symbol)
