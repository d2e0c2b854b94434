"""Module indexing governance proposals, their parameters, tallies and snapshots."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Protocol, Sequence

from bdjuno.gov_types import (
    PROPOSAL_STATUS_INVALID,
    DepositParams,
    GovParams,
    Proposal,
    ProposalStakingPoolSnapshot,
    ProposalUpdate,
    ProposalValidatorStatusSnapshot,
    TallyParams,
    TallyResult,
    VotingParams,
)
from bdjuno.staking import BOND_STATUS_BONDED
from bdjuno.types import Pool, Validator, ValidatorStatus, ValidatorVotingPower

_log = logging.getLogger(__name__)

MODULE_NAME = "gov"

PROPOSAL_STATUS_PASSED = "PROPOSAL_STATUS_PASSED"

TEXT_PROPOSAL = "/cosmos.gov.v1beta1.TextProposal"
PARAMETER_CHANGE_PROPOSAL = "/cosmos.params.v1beta1.ParameterChangeProposal"
COMMUNITY_POOL_SPEND_PROPOSAL = "/cosmos.distribution.v1beta1.CommunityPoolSpendProposal"

# Route and type of every known proposal content.
_PROPOSAL_KINDS = {
    TEXT_PROPOSAL: ("gov", "Text"),
    PARAMETER_CHANGE_PROPOSAL: ("params", "ParameterChange"),
    COMMUNITY_POOL_SPEND_PROPOSAL: ("distribution", "CommunityPoolSpend"),
    "/cosmos.upgrade.v1beta1.SoftwareUpgradeProposal": ("upgrade", "SoftwareUpgrade"),
    "/cosmos.upgrade.v1beta1.CancelSoftwareUpgradeProposal": ("upgrade", "CancelSoftwareUpgrade"),
    "/ibc.core.client.v1.ClientUpdateProposal": ("ibc", "ClientUpdate"),
    "/ibc.core.client.v1.UpgradeProposal": ("ibc", "IBCUpgrade"),
}

_PROPOSAL_STATUSES = {
    0: "PROPOSAL_STATUS_UNSPECIFIED",
    1: "PROPOSAL_STATUS_DEPOSIT_PERIOD",
    2: "PROPOSAL_STATUS_VOTING_PERIOD",
    3: PROPOSAL_STATUS_PASSED,
    4: "PROPOSAL_STATUS_REJECTED",
    5: "PROPOSAL_STATUS_FAILED",
}

_NOT_FOUND = "NotFound"
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_RFC3339 = re.compile(
    r"(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})"
)


class GovSource(Protocol):
    """Where the governance module reads the chain state from."""

    def proposal(self, height: int, proposal_id: int) -> Mapping[str, Any]:
        """Return the proposal having the given id."""

    def proposal_deposit(self, height: int, proposal_id: int, depositor: str) -> Mapping[str, Any]:
        """Return the deposit made by ``depositor`` towards a proposal."""

    def tally_result(self, height: int, proposal_id: int) -> Mapping[str, Any]:
        """Return the current tally of a proposal."""

    def deposit_params(self, height: int) -> Mapping[str, Any]:
        """Return the deposit parameters."""

    def voting_params(self, height: int) -> Mapping[str, Any]:
        """Return the voting parameters."""

    def tally_params(self, height: int) -> Mapping[str, Any]:
        """Return the tally parameters."""


class AccountRefresher(Protocol):
    def refresh_accounts(self, height: int, addresses: list[str]) -> None:
        """Refresh the stored data of the given accounts."""


class ParamsUpdater(Protocol):
    def update_params(self, height: int) -> None:
        """Fetch and store the module parameters at ``height``."""


class StakingInfo(Protocol):
    def get_staking_pool(self, height: int) -> Pool:
        """Return the staking pool."""

    def get_validators_with_status(
        self, height: int, status: str
    ) -> tuple[Sequence[Mapping[str, Any]], Sequence[Validator]]:
        """Return the chain validators with a status and their converted form."""

    def get_validators_voting_powers(
        self, height: int, block_validators: Iterable[Mapping[str, Any]]
    ) -> Sequence[ValidatorVotingPower]:
        """Return the voting powers of the validators."""

    def get_validators_statuses(
        self, height: int, validators: Iterable[Mapping[str, Any]]
    ) -> Sequence[ValidatorStatus]:
        """Return the statuses of the given validators."""

    def update_params(self, height: int) -> None:
        """Fetch and store the staking parameters at ``height``."""


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return _ZERO_TIME
    match = _RFC3339.fullmatch(str(value))
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    date, clock, fraction, offset = match.groups()
    micros = (fraction or "")[:6].ljust(6, "0")
    offset = "+00:00" if offset in ("Z", "z") else offset
    return datetime.fromisoformat(f"{date}T{clock}.{micros}{offset}")


def _content_type(content: Any) -> str:
    if isinstance(content, Mapping):
        return str(content.get("@type") or "")
    return ""


def _proposal_kind(content: Any) -> tuple[str, str]:
    content_type = _content_type(content)
    try:
        return _PROPOSAL_KINDS[content_type]
    except KeyError:
        raise ValueError(f"unknown proposal content type: {content_type!r}") from None


def _proposal_status(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return _PROPOSAL_STATUSES[value]
        except KeyError:
            raise ValueError(f"invalid proposal status: {value!r}") from None
    return str(value or _PROPOSAL_STATUSES[0])


def _proposal_id(proposal: Mapping[str, Any]) -> int:
    return int(str(proposal["proposal_id"]))


def _build_proposal(proposal: Mapping[str, Any], proposer: str) -> Proposal:
    """Turn a chain proposal into the stored record."""
    content = proposal.get("content")
    route, kind = _proposal_kind(content)
    return Proposal(
        proposal_id=_proposal_id(proposal),
        proposal_route=route,
        proposal_type=kind,
        content=content,
        status=_proposal_status(proposal.get("status")),
        submit_time=_parse_time(proposal.get("submit_time")),
        deposit_end_time=_parse_time(proposal.get("deposit_end_time")),
        voting_start_time=_parse_time(proposal.get("voting_start_time")),
        voting_end_time=_parse_time(proposal.get("voting_end_time")),
        proposer=proposer,
    )


def _tally_result(proposal_id: int, tally: Mapping[str, Any], height: int) -> TallyResult:
    return TallyResult(
        proposal_id=proposal_id,
        yes=str(tally.get("yes", "0")),
        abstain=str(tally.get("abstain", "0")),
        no=str(tally.get("no", "0")),
        no_with_veto=str(tally.get("no_with_veto", "0")),
        height=height,
    )


def _find_voting_power(
    cons_address: str, powers: Iterable[ValidatorVotingPower]
) -> ValidatorVotingPower:
    for power in powers:
        if power.consensus_address == cons_address:
            return power
    raise LookupError(f"voting power not found for validator with consensus address {cons_address}")


def _find_status(cons_address: str, statuses: Iterable[ValidatorStatus]) -> ValidatorStatus:
    for status in statuses:
        if status.consensus_address == cons_address:
            return status
    raise LookupError(f"cannot find status for validator with consensus address {cons_address}")


class GovModule:
    """Keeps governance parameters, proposals and their snapshots up to date."""

    def __init__(
        self,
        source: GovSource,
        auth_module: AccountRefresher,
        distr_module: ParamsUpdater,
        mint_module: ParamsUpdater,
        slashing_module: ParamsUpdater,
        staking_module: StakingInfo,
        db: Any,
    ) -> None:
        self.source = source
        self.auth_module = auth_module
        self.distr_module = distr_module
        self.mint_module = mint_module
        self.slashing_module = slashing_module
        self.staking_module = staking_module
        self.db = db

    def name(self) -> str:
        return MODULE_NAME

    def update_params(self, height: int) -> None:
        """Fetch the governance parameters at ``height`` and store them."""
        _log.debug("updating params at height %d", height)
        try:
            deposit_params = self.source.deposit_params(height)
        except Exception as err:
            raise RuntimeError(f"error while getting gov deposit params: {err}") from err
        try:
            voting_params = self.source.voting_params(height)
        except Exception as err:
            raise RuntimeError(f"error while getting gov voting params: {err}") from err
        try:
            tally_params = self.source.tally_params(height)
        except Exception as err:
            raise RuntimeError(f"error while getting gov tally params: {err}") from err

        self.db.save_gov_params(
            GovParams(
                deposit_params=DepositParams.from_chain(deposit_params),
                voting_params=VotingParams.from_chain(voting_params),
                tally_params=TallyParams.from_chain(tally_params),
                height=height,
            )
        )

    def update_proposal(self, height: int, proposal_id: int) -> None:
        """Refresh the status, tally and related data of a proposal.

        A proposal no longer found on the chain is marked as invalid.
        """
        try:
            proposal = self.source.proposal(height, proposal_id)
        except Exception as err:
            if _NOT_FOUND in str(err):
                self._update_deleted_proposal_status(proposal_id)
                return
            raise RuntimeError(f"error while getting proposal: {err}") from err

        try:
            self._handle_param_change_proposal(height, proposal)
        except Exception as err:
            raise RuntimeError(
                f"error while updating params from ParamChangeProposal: {err}"
            ) from err
        try:
            self._update_proposal_status(proposal)
        except Exception as err:
            raise RuntimeError(f"error while updating proposal status: {err}") from err
        try:
            self._update_proposal_tally_result(proposal)
        except Exception as err:
            raise RuntimeError(f"error while updating proposal tally result: {err}") from err
        try:
            self._update_accounts(proposal)
        except Exception as err:
            raise RuntimeError(f"error while updating account: {err}") from err

    def update_proposal_snapshots(
        self, height: int, block_validators: Iterable[Mapping[str, Any]], proposal_id: int
    ) -> None:
        """Store the staking pool and validator statuses snapshots of a proposal."""
        try:
            self._update_proposal_staking_pool_snapshot(height, proposal_id)
        except Exception as err:
            raise RuntimeError(
                f"error while updating proposal staking pool snapshot: {err}"
            ) from err
        try:
            self._update_proposal_validator_statuses_snapshot(height, proposal_id, block_validators)
        except Exception as err:
            raise RuntimeError(
                f"error while updating proposal validator statuses snapshot: {err}"
            ) from err

    # ----------------------------------------------------------------------------------------------

    def _update_deleted_proposal_status(self, proposal_id: int) -> None:
        stored = self.db.get_proposal(proposal_id)
        self.db.update_proposal(
            ProposalUpdate(
                proposal_id=stored.proposal_id,
                status=PROPOSAL_STATUS_INVALID,
                voting_start_time=stored.voting_start_time,
                voting_end_time=stored.voting_end_time,
            )
        )

    def _handle_param_change_proposal(self, height: int, proposal: Mapping[str, Any]) -> None:
        """Refresh the parameters of every module touched by a passed parameter change."""
        if _proposal_status(proposal.get("status")) != PROPOSAL_STATUS_PASSED:
            return
        content = proposal.get("content")
        if _content_type(content) != PARAMETER_CHANGE_PROPOSAL:
            return

        updaters = {
            "distribution": self.distr_module.update_params,
            MODULE_NAME: self.update_params,
            "mint": self.mint_module.update_params,
            "slashing": self.slashing_module.update_params,
            "staking": self.staking_module.update_params,
        }
        for change in content.get("changes") or []:
            subspace = change.get("subspace")
            update = updaters.get(subspace)
            if update is None:
                continue
            try:
                update(height)
            except Exception as err:
                raise RuntimeError(
                    f"error while updating ParamChangeProposal {subspace} params : {err}"
                ) from err

    def _update_proposal_status(self, proposal: Mapping[str, Any]) -> None:
        self.db.update_proposal(
            ProposalUpdate(
                proposal_id=_proposal_id(proposal),
                status=_proposal_status(proposal.get("status")),
                voting_start_time=_parse_time(proposal.get("voting_start_time")),
                voting_end_time=_parse_time(proposal.get("voting_end_time")),
            )
        )

    def _update_proposal_tally_result(self, proposal: Mapping[str, Any]) -> None:
        height = self.db.get_last_block_height()
        proposal_id = _proposal_id(proposal)
        try:
            tally = self.source.tally_result(height, proposal_id)
        except Exception as err:
            raise RuntimeError(f"error while getting tally result: {err}") from err
        self.db.save_tally_results([_tally_result(proposal_id, tally, height)])

    def _update_accounts(self, proposal: Mapping[str, Any]) -> None:
        """Refresh the recipient of a community pool spend proposal."""
        content = proposal.get("content")
        if _content_type(content) != COMMUNITY_POOL_SPEND_PROPOSAL:
            return
        try:
            height = self.db.get_last_block_height()
        except Exception as err:
            raise RuntimeError(f"error while getting last block height: {err}") from err
        self.auth_module.refresh_accounts(height, [content.get("recipient") or ""])

    def _update_proposal_staking_pool_snapshot(self, height: int, proposal_id: int) -> None:
        try:
            pool = self.staking_module.get_staking_pool(height)
        except Exception as err:
            raise RuntimeError(f"error while getting staking pool: {err}") from err
        self.db.save_proposal_staking_pool_snapshot(ProposalStakingPoolSnapshot(proposal_id, pool))

    def _update_proposal_validator_statuses_snapshot(
        self, height: int, proposal_id: int, block_validators: Iterable[Mapping[str, Any]]
    ) -> None:
        try:
            chain_validators, validators = self.staking_module.get_validators_with_status(
                height, BOND_STATUS_BONDED
            )
        except Exception as err:
            raise RuntimeError(
                f"error while getting validators with bonded status: {err}"
            ) from err
        try:
            voting_powers = self.staking_module.get_validators_voting_powers(height, block_validators)
        except Exception as err:
            raise RuntimeError(f"error while getting validators voting powers: {err}") from err
        try:
            statuses = self.staking_module.get_validators_statuses(height, chain_validators)
        except Exception as err:
            raise RuntimeError(f"error while getting validator statuses: {err}") from err

        snapshots = []
        for validator in validators:
            cons_address = validator.cons_address
            try:
                status = _find_status(cons_address, statuses)
            except LookupError as err:
                raise LookupError(f"error while searching for status: {err}") from err
            try:
                voting_power = _find_voting_power(cons_address, voting_powers)
            except LookupError as err:
                raise LookupError(f"error while searching for voting power: {err}") from err
            snapshots.append(
                ProposalValidatorStatusSnapshot(
                    proposal_id=proposal_id,
                    validator_cons_address=cons_address,
                    validator_voting_power=voting_power.voting_power,
                    validator_status=status.status,
                    validator_jailed=status.jailed,
                    height=height,
                )
            )
        self.db.save_proposal_validators_statuses_snapshots(snapshots)