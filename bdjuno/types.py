"""Plain data records describing the chain state that gets indexed."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Sequence

# Identity value meaning "leave the stored description untouched".
DO_NOT_MODIFY_DESC = "[do-not-modify]"


# --------------------------------------------------------------------------------------------------
# Auth / bank


@dataclass(frozen=True)
class Account:
    """A chain account."""

    address: str


@dataclass(frozen=True)
class AccountBalance:
    """The balance of an account at a given height."""

    address: str
    balance: Sequence[Any]
    height: int


# --------------------------------------------------------------------------------------------------
# Consensus


@dataclass(frozen=True)
class Genesis:
    """The useful information about the genesis.

    Equality compares the genesis time as an instant, so the same moment
    expressed in different time zones compares equal.
    """

    chain_id: str
    time: datetime
    initial_height: int


@dataclass(frozen=True)
class ConsensusEvent:
    """A single consensus step reached by the node."""

    height: int
    round: int
    step: str


# --------------------------------------------------------------------------------------------------
# Module parameters


@dataclass(frozen=True)
class DistributionParams:
    """Parameters of the distribution module at a given height."""

    params: Mapping[str, Any]
    height: int


@dataclass(frozen=True)
class MintParams:
    """Parameters of the mint module at a given height."""

    params: Mapping[str, Any]
    height: int


@dataclass(frozen=True)
class SlashingParams:
    """Parameters of the slashing module at a given height."""

    params: Mapping[str, Any]
    height: int


@dataclass(frozen=True)
class StakingParams:
    """Parameters of the staking module at a given height."""

    params: Mapping[str, Any]
    height: int


# --------------------------------------------------------------------------------------------------
# Fee grants


@dataclass(frozen=True)
class FeeGrant:
    """A fee allowance granted by one account to another."""

    granter: str
    grantee: str
    allowance: Any
    height: int


@dataclass(frozen=True)
class GrantRemoval:
    """The removal of a fee grant at a given height."""

    grantee: str
    granter: str
    height: int


# --------------------------------------------------------------------------------------------------
# Price feed


@dataclass(frozen=True)
class TokenUnit:
    """A unit of a token."""

    denom: str
    exponent: int
    aliases: list[str] = field(default_factory=list)
    price_id: str = ""


@dataclass(frozen=True)
class Token:
    """A token known to the chain, with its units."""

    name: str
    units: list[TokenUnit] = field(default_factory=list)


@dataclass(frozen=True)
class TokenPrice:
    """The price of a token unit at a given moment."""

    unit_name: str
    price: float
    market_cap: int
    timestamp: datetime


# --------------------------------------------------------------------------------------------------
# Slashing


@dataclass(frozen=True)
class ValidatorSigningInfo:
    """The signing info of a validator at a given height."""

    validator_address: str
    start_height: int
    index_offset: int
    jailed_until: datetime
    tombstoned: bool
    missed_blocks_counter: int
    height: int


# --------------------------------------------------------------------------------------------------
# Double signing


@dataclass(frozen=True)
class DoubleSignVote:
    """One of the two conflicting votes inside a double sign evidence."""

    type: int
    height: int
    round: int
    block_id: str
    validator_address: str
    validator_index: int
    signature: str


@dataclass(frozen=True)
class DoubleSignEvidence:
    """Evidence of a validator signing two different votes at the same step."""

    height: int
    vote_a: DoubleSignVote
    vote_b: DoubleSignVote


# --------------------------------------------------------------------------------------------------
# Staking


@dataclass(frozen=True)
class Pool:
    """The staking pool at a given height."""

    bonded_tokens: int
    not_bonded_tokens: int
    height: int


@dataclass(frozen=True)
class Validator:
    """The static data of a single validator."""

    cons_address: str
    operator_address: str
    cons_pubkey: str
    self_delegate_address: str
    max_change_rate: Decimal | None
    max_rate: Decimal | None
    height: int


@dataclass(frozen=True)
class ValidatorDescription:
    """A validator's description and avatar at a given height.

    ``avatar_url`` is ``DO_NOT_MODIFY_DESC`` when the stored avatar must be kept.
    """

    operator_address: str
    description: Any
    avatar_url: str
    height: int


@dataclass(frozen=True)
class ValidatorCommission:
    """A validator's commission rate and minimum self delegation at a given height."""

    val_address: str
    commission: Decimal | None
    min_self_delegation: int | None
    height: int


@dataclass(frozen=True)
class ValidatorVotingPower:
    """The voting power of a validator at a given height."""

    consensus_address: str
    voting_power: int
    height: int


@dataclass(frozen=True)
class ValidatorStatus:
    """The state of a validator at a given height."""

    consensus_address: str
    consensus_pubkey: str
    status: int
    jailed: bool
    tombstoned: bool
    height: int