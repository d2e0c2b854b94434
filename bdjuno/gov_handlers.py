"""Block, genesis and message handling for the governance module."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Mapping, Sequence

from bdjuno.gov import (
    MODULE_NAME,
    GovModule,
    _build_proposal,
    _proposal_id,
    _tally_result,
)
from bdjuno.gov_types import (
    Deposit,
    DepositParams,
    GovParams,
    TallyParams,
    Vote,
    VotingParams,
)

_log = logging.getLogger(__name__)

MSG_SUBMIT_PROPOSAL = "/cosmos.gov.v1beta1.MsgSubmitProposal"
MSG_DEPOSIT = "/cosmos.gov.v1beta1.MsgDeposit"
MSG_VOTE = "/cosmos.gov.v1beta1.MsgVote"

EVENT_TYPE_SUBMIT_PROPOSAL = "submit_proposal"
ATTRIBUTE_KEY_PROPOSAL_ID = "proposal_id"

# Heights given to the tallies and deposits read from the genesis.
_GENESIS_RECORD_HEIGHT = 1

_UINT64_LIMIT = 1 << 64
_DIGITS = re.compile(r"\d+")


def _module_genesis_state(app_state: Mapping[str, Any], module: str) -> Mapping[str, Any]:
    raw = app_state.get(module)
    if raw is None:
        raise ValueError(f"missing {module} genesis state")
    if isinstance(raw, (str, bytes, bytearray)):
        raw = json.loads(raw)
    if not isinstance(raw, Mapping):
        raise ValueError(f"{module} genesis state is not a JSON object")
    return raw


def _block_height(block: Mapping[str, Any]) -> int:
    inner = block.get("block", block)
    return int(inner["header"]["height"])


def _block_validators(validators: Any) -> list[Mapping[str, Any]]:
    if validators is None:
        return []
    if isinstance(validators, Mapping):
        return list(validators.get("validators") or [])
    return list(validators)


def _find_event(tx: Mapping[str, Any], index: int, event_type: str) -> Mapping[str, Any]:
    logs = tx.get("logs") or []
    if not 0 <= index < len(logs):
        raise LookupError(f"no log found for message {index}")
    for event in logs[index].get("events") or []:
        if event.get("type") == event_type:
            return event
    raise LookupError(f"no {event_type} event found inside tx with hash {tx.get('txhash', '')}")


def _find_attribute(event: Mapping[str, Any], key: str) -> str:
    for attribute in event.get("attributes") or []:
        if attribute.get("key") == key:
            return str(attribute.get("value"))
    raise LookupError(f"no event with attribute {key} found inside tx")


def _parse_uint64(value: str) -> int:
    if not _DIGITS.fullmatch(value) or int(value) >= _UINT64_LIMIT:
        raise ValueError(f"invalid unsigned integer: {value!r}")
    return int(value)


class IndexingGovModule(GovModule):
    """The governance module reacting to new blocks, the genesis and transaction messages."""

    # ----------------------------------------------------------------------------------------------
    # Blocks

    def handle_block(
        self,
        block: Mapping[str, Any],
        block_results: Any,
        txs: Sequence[Any] | None,
        validators: Any,
    ) -> None:
        """Refresh every open proposal; failures are logged, not raised."""
        height = _block_height(block)
        try:
            self._update_proposals(height, _block_validators(validators))
        except Exception as err:
            _log.error("error while updating proposals at height %d: %s", height, err)

    def _update_proposals(self, height: int, block_validators: Iterable[Mapping[str, Any]]) -> None:
        try:
            ids = list(self.db.get_open_proposals_ids())
        except Exception as err:
            _log.error("error while getting open ids: %s", err)
            ids = []

        block_validators = list(block_validators)
        for proposal_id in ids:
            try:
                self.update_proposal(height, proposal_id)
            except Exception as err:
                raise RuntimeError(f"error while updating proposal: {err}") from err
            try:
                self.update_proposal_snapshots(height, block_validators, proposal_id)
            except Exception as err:
                raise RuntimeError(f"error while updating proposal snapshots: {err}") from err

    # ----------------------------------------------------------------------------------------------
    # Genesis

    def handle_genesis(self, doc: Mapping[str, Any], app_state: Mapping[str, Any]) -> None:
        """Store the proposals and parameters found inside the genesis state."""
        _log.debug("parsing genesis")
        try:
            state = _module_genesis_state(app_state, MODULE_NAME)
        except ValueError as err:
            raise ValueError(f"error while reading gov genesis data: {err}") from err

        try:
            self._save_proposals(state.get("proposals") or [])
        except Exception as err:
            raise RuntimeError(f"error while storing genesis governance proposals: {err}") from err

        try:
            self.db.save_gov_params(
                GovParams(
                    deposit_params=DepositParams.from_chain(state.get("deposit_params") or {}),
                    voting_params=VotingParams.from_chain(state.get("voting_params") or {}),
                    tally_params=TallyParams.from_chain(state.get("tally_params") or {}),
                    height=int(doc.get("initial_height") or 0),
                )
            )
        except Exception as err:
            raise RuntimeError(f"error while storing genesis governance params: {err}") from err

    def _save_proposals(self, chain_proposals: Iterable[Mapping[str, Any]]) -> None:
        # The proposer of a genesis proposal cannot be known.
        proposals, tallies, deposits = [], [], []
        for proposal in chain_proposals:
            proposal_id = _proposal_id(proposal)
            proposals.append(_build_proposal(proposal, ""))
            tallies.append(
                _tally_result(proposal_id, proposal.get("final_tally_result") or {}, _GENESIS_RECORD_HEIGHT)
            )
            deposits.append(
                Deposit(
                    proposal_id=proposal_id,
                    depositor="",
                    amount=list(proposal.get("total_deposit") or []),
                    height=_GENESIS_RECORD_HEIGHT,
                )
            )
        self.db.save_proposals(proposals)
        self.db.save_deposits(deposits)
        self.db.save_tally_results(tallies)

    # ----------------------------------------------------------------------------------------------
    # Messages

    def handle_msg(self, index: int, msg: Mapping[str, Any], tx: Mapping[str, Any]) -> None:
        """Store the proposals, deposits and votes carried by governance messages."""
        if not tx.get("logs"):
            return

        msg_type = msg.get("@type")
        if msg_type == MSG_SUBMIT_PROPOSAL:
            self._handle_msg_submit_proposal(tx, index, msg)
        elif msg_type == MSG_DEPOSIT:
            self._handle_msg_deposit(tx, msg)
        elif msg_type == MSG_VOTE:
            self._handle_msg_vote(tx, msg)

    def _handle_msg_submit_proposal(
        self, tx: Mapping[str, Any], index: int, msg: Mapping[str, Any]
    ) -> None:
        try:
            event = _find_event(tx, index, EVENT_TYPE_SUBMIT_PROPOSAL)
        except LookupError as err:
            raise LookupError(f"error while searching for EventTypeSubmitProposal: {err}") from err
        try:
            raw_id = _find_attribute(event, ATTRIBUTE_KEY_PROPOSAL_ID)
        except LookupError as err:
            raise LookupError(f"error while searching for AttributeKeyProposalID: {err}") from err
        try:
            proposal_id = _parse_uint64(raw_id)
        except ValueError as err:
            raise ValueError(f"error while parsing proposal id: {err}") from err

        height = int(tx["height"])
        try:
            proposal = self.source.proposal(height, proposal_id)
        except Exception as err:
            raise RuntimeError(f"error while getting proposal: {err}") from err

        proposer = msg.get("proposer") or ""
        try:
            record = _build_proposal(proposal, proposer)
        except ValueError as err:
            raise ValueError(f"error while unpacking proposal content: {err}") from err

        self.db.save_proposals([record])
        self.db.save_deposits(
            [Deposit(record.proposal_id, proposer, list(msg.get("initial_deposit") or []), height)]
        )

    def _handle_msg_deposit(self, tx: Mapping[str, Any], msg: Mapping[str, Any]) -> None:
        height = int(tx["height"])
        proposal_id = int(str(msg["proposal_id"]))
        depositor = msg.get("depositor") or ""
        try:
            deposit = self.source.proposal_deposit(height, proposal_id, depositor)
        except Exception as err:
            raise RuntimeError(f"error while getting proposal deposit: {err}") from err
        self.db.save_deposits(
            [Deposit(proposal_id, depositor, list(deposit.get("amount") or []), height)]
        )

    def _handle_msg_vote(self, tx: Mapping[str, Any], msg: Mapping[str, Any]) -> None:
        vote = Vote(
            proposal_id=int(str(msg["proposal_id"])),
            voter=msg.get("voter") or "",
            option=msg.get("option"),
            height=int(tx["height"]),
        )
        self.db.save_vote(vote)