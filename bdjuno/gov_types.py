"""Records describing governance parameters, proposals, deposits and votes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Sequence

from bdjuno.types import Pool

# Status stored for proposals that were removed from the chain.
PROPOSAL_STATUS_INVALID = "PROPOSAL_STATUS_INVALID"

_NANOS_PER_SECOND = 1_000_000_000


def _duration_nanoseconds(value: Any) -> int:
    """Convert a chain duration into a number of nanoseconds.

    Accepts a ``timedelta``, an integer number of nanoseconds, or the JSON
    form of a protobuf duration such as ``"172800s"``.
    """
    if isinstance(value, timedelta):
        whole_seconds = value.days * 86_400 + value.seconds
        return whole_seconds * _NANOS_PER_SECOND + value.microseconds * 1_000
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.endswith("s"):
        try:
            seconds = Decimal(value[:-1])
        except InvalidOperation as err:
            raise ValueError(f"invalid duration: {value!r}") from err
        return int(seconds * _NANOS_PER_SECOND)
    raise ValueError(f"invalid duration: {value!r}")


def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as err:
        raise ValueError(f"invalid decimal: {value!r}") from err


@dataclass(frozen=True)
class DepositParams:
    """Deposit parameters of the governance module; the period is in nanoseconds."""

    min_deposit: Sequence[Any] = field(default_factory=list)
    max_deposit_period: int = 0

    @classmethod
    def from_chain(cls, params: Mapping[str, Any]) -> DepositParams:
        """Build from the deposit parameters returned by the chain."""
        return cls(
            min_deposit=list(params.get("min_deposit") or []),
            max_deposit_period=_duration_nanoseconds(params.get("max_deposit_period", 0)),
        )


@dataclass(frozen=True)
class VotingParams:
    """Voting parameters of the governance module; the period is in nanoseconds."""

    voting_period: int = 0

    @classmethod
    def from_chain(cls, params: Mapping[str, Any]) -> VotingParams:
        """Build from the voting parameters returned by the chain."""
        return cls(voting_period=_duration_nanoseconds(params.get("voting_period", 0)))


@dataclass(frozen=True)
class TallyParams:
    """Tally parameters of the governance module."""

    quorum: Decimal
    threshold: Decimal
    veto_threshold: Decimal

    @classmethod
    def from_chain(cls, params: Mapping[str, Any]) -> TallyParams:
        """Build from the tally parameters returned by the chain."""
        return cls(
            quorum=_decimal(params["quorum"]),
            threshold=_decimal(params["threshold"]),
            veto_threshold=_decimal(params["veto_threshold"]),
        )


@dataclass(frozen=True)
class GovParams:
    """All the governance module parameters at a given height."""

    deposit_params: DepositParams
    voting_params: VotingParams
    tally_params: TallyParams
    height: int


@dataclass(frozen=True)
class Proposal:
    """A single governance proposal."""

    proposal_id: int
    proposal_route: str
    proposal_type: str
    content: Any
    status: str
    submit_time: datetime
    deposit_end_time: datetime
    voting_start_time: datetime
    voting_end_time: datetime
    proposer: str


@dataclass(frozen=True)
class ProposalUpdate:
    """The data used to update a stored proposal."""

    proposal_id: int
    status: str
    voting_start_time: datetime
    voting_end_time: datetime


@dataclass(frozen=True)
class Deposit:
    """A single deposit made towards a proposal."""

    proposal_id: int
    depositor: str
    amount: Sequence[Any]
    height: int


@dataclass(frozen=True)
class Vote:
    """A single vote on a proposal."""

    proposal_id: int
    voter: str
    option: Any
    height: int


@dataclass(frozen=True)
class TallyResult:
    """The tally of a proposal at a given height."""

    proposal_id: int
    yes: str
    abstain: str
    no: str
    no_with_veto: str
    height: int


@dataclass(frozen=True)
class ProposalStakingPoolSnapshot:
    """A staking pool snapshot associated with a proposal."""

    proposal_id: int
    pool: Pool


@dataclass(frozen=True)
class ProposalValidatorStatusSnapshot:
    """A snapshot of a validator's status associated with a proposal."""

    proposal_id: int
    validator_cons_address: str
    validator_voting_power: int
    validator_status: int
    validator_jailed: bool
    height: int