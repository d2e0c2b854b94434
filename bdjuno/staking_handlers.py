"""Block, genesis and message handling for the staking module."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Mapping, Sequence

from bdjuno.addresses import CONSENSUS_PREFIX, bech32_encode
from bdjuno.staking import StakingModule
from bdjuno.types import DoubleSignEvidence, DoubleSignVote, StakingParams

_log = logging.getLogger(__name__)

MSG_CREATE_VALIDATOR = "/cosmos.staking.v1beta1.MsgCreateValidator"
MSG_EDIT_VALIDATOR = "/cosmos.staking.v1beta1.MsgEditValidator"
DUPLICATE_VOTE_EVIDENCE = "tendermint/DuplicateVoteEvidence"
GENUTIL_MODULE = "genutil"
STAKING_MODULE = "staking"

_VOTE_TYPES = {
    "SIGNED_MSG_TYPE_UNKNOWN": 0,
    "SIGNED_MSG_TYPE_PREVOTE": 1,
    "SIGNED_MSG_TYPE_PRECOMMIT": 2,
    "SIGNED_MSG_TYPE_PROPOSAL": 32,
}


def _initial_height(doc: Mapping[str, Any]) -> int:
    return int(doc.get("initial_height") or 0)


def _json_object(raw: Any, what: str) -> Mapping[str, Any]:
    if raw is None:
        raise ValueError(f"missing {what}")
    if isinstance(raw, (str, bytes, bytearray)):
        raw = json.loads(raw)
    if not isinstance(raw, Mapping):
        raise ValueError(f"{what} is not a JSON object")
    return raw


def _module_genesis_state(app_state: Mapping[str, Any], module: str) -> Mapping[str, Any]:
    return _json_object(app_state.get(module), f"{module} genesis state")


def _block_contents(block: Mapping[str, Any]) -> tuple[int, list[Any]]:
    inner = block.get("block", block)
    height = int(inner["header"]["height"])
    evidence = (inner.get("evidence") or {}).get("evidence") or []
    return height, list(evidence)


def _block_validators(validators: Any) -> list[Mapping[str, Any]]:
    if validators is None:
        return []
    if isinstance(validators, Mapping):
        return list(validators.get("validators") or [])
    return list(validators)


def _hex_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(str(value))


def _signature_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return base64.b64decode(str(value), validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"invalid signature encoding: {err}") from err


def _hash_string(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex().upper()
    return str(value or "").upper()


def _vote_type(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value in _VOTE_TYPES:
        return _VOTE_TYPES[value]
    return int(value)


def _block_id_string(block_id: Mapping[str, Any] | None) -> str:
    block_id = block_id or {}
    parts = block_id.get("parts") or block_id.get("part_set_header") or {}
    return f"{_hash_string(block_id.get('hash'))}:{int(parts.get('total') or 0)}:{_hash_string(parts.get('hash'))}"


def _double_sign_vote(vote: Mapping[str, Any], prefix: str) -> DoubleSignVote:
    return DoubleSignVote(
        type=_vote_type(vote.get("type", 0)),
        height=int(vote.get("height") or 0),
        round=int(vote.get("round") or 0),
        block_id=_block_id_string(vote.get("block_id")),
        validator_address=bech32_encode(prefix, _hex_bytes(vote.get("validator_address"))),
        validator_index=int(vote.get("validator_index") or 0),
        signature=_signature_bytes(vote.get("signature")).hex(),
    )


def _duplicate_vote(evidence: Any) -> Mapping[str, Any] | None:
    """Return the body of a duplicate vote evidence, or None for any other evidence."""
    if not isinstance(evidence, Mapping):
        return None
    if "type" in evidence and evidence["type"] != DUPLICATE_VOTE_EVIDENCE:
        return None
    body = evidence.get("value", evidence)
    if not isinstance(body, Mapping) or "vote_a" not in body or "vote_b" not in body:
        return None
    return body


def _messages(tx: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    body = tx.get("body") or {}
    return list(body.get("messages") or [])


class IndexingStakingModule(StakingModule):
    """The staking module reacting to new blocks, the genesis and transaction messages."""

    consensus_prefix: str = CONSENSUS_PREFIX

    # ----------------------------------------------------------------------------------------------
    # Blocks

    def handle_block(
        self,
        block: Mapping[str, Any],
        block_results: Any,
        txs: Sequence[Any] | None,
        validators: Any,
    ) -> None:
        """Update validators, then their voting powers, statuses, evidences and the pool.

        The follow-up updates run concurrently; their failures are logged, not raised.
        """
        height, evidence = _block_contents(block)
        try:
            chain_validators = self._update_validators(height)
        except Exception as err:
            raise RuntimeError(f"error while updating validators: {err}") from err

        tasks: list[Callable[[], None]] = [
            lambda: self._update_validator_voting_power(height, validators),
            lambda: self._update_validators_status(height, chain_validators),
            lambda: self._update_double_sign_evidence(height, evidence),
            lambda: self._update_staking_pool(height),
        ]
        with ThreadPoolExecutor(max_workers=len(tasks)) as executor:
            for task in tasks:
                executor.submit(task)

    def _update_validators_status(self, height: int, validators: Iterable[Mapping[str, Any]]) -> None:
        _log.debug("updating validators statuses at height %d", height)
        try:
            statuses = self.get_validators_statuses(height, validators)
        except Exception as err:
            _log.error("error while getting validators statuses at height %d: %s", height, err)
            return
        try:
            self.db.save_validators_statuses(statuses)
        except Exception as err:
            _log.error("error while saving validators statuses at height %d: %s", height, err)

    def _update_validator_voting_power(self, height: int, validators: Any) -> None:
        _log.debug("updating validators voting powers at height %d", height)
        try:
            voting_powers = self.get_validators_voting_powers(height, _block_validators(validators))
        except Exception as err:
            _log.error("error while getting validators voting powers at height %d: %s", height, err)
            return
        try:
            self.db.save_validators_voting_powers(voting_powers)
        except Exception as err:
            _log.error("error while saving validators voting powers at height %d: %s", height, err)

    def _update_double_sign_evidence(self, height: int, evidence_list: Iterable[Any]) -> None:
        _log.debug("updating double sign evidence at height %d", height)
        for item in evidence_list:
            body = _duplicate_vote(item)
            if body is None:
                continue
            try:
                evidence = DoubleSignEvidence(
                    height=height,
                    vote_a=_double_sign_vote(body["vote_a"], self.consensus_prefix),
                    vote_b=_double_sign_vote(body["vote_b"], self.consensus_prefix),
                )
                self.db.save_double_sign_evidence(evidence)
            except Exception as err:
                _log.error("error while saving double sign evidence at height %d: %s", height, err)
                return

    def _update_staking_pool(self, height: int) -> None:
        _log.debug("updating staking pool at height %d", height)
        try:
            pool = self.get_staking_pool(height)
        except Exception as err:
            _log.error("error while getting staking pool at height %d: %s", height, err)
            return
        try:
            self.db.save_staking_pool(pool)
        except Exception as err:
            _log.error("error while saving staking pool at height %d: %s", height, err)

    # ----------------------------------------------------------------------------------------------
    # Genesis

    def handle_genesis(self, doc: Mapping[str, Any], app_state: Mapping[str, Any]) -> None:
        """Store the staking params, genesis transactions and validators of the genesis."""
        _log.debug("parsing genesis")
        height = _initial_height(doc)
        try:
            state = _module_genesis_state(app_state, STAKING_MODULE)
        except ValueError as err:
            raise ValueError(f"error while unmarshaling staking state: {err}") from err

        try:
            self.db.save_staking_params(
                StakingParams(params=dict(state.get("params") or {}), height=height)
            )
        except Exception as err:
            raise RuntimeError(f"error while storing genesis staking params: {err}") from err

        try:
            self._parse_genesis_transactions(height, app_state)
        except Exception as err:
            raise RuntimeError(f"error while storing genesis transactions: {err}") from err

        validators = list(state.get("validators") or [])
        try:
            self.db.save_validators_data(
                [self._convert_validator(height, validator) for validator in validators]
            )
        except Exception as err:
            raise RuntimeError(f"error while storing staking genesis validators: {err}") from err

        try:
            for validator in validators:
                self.db.save_validator_description(
                    self._convert_validator_description(
                        height, validator["operator_address"], validator.get("description") or {}
                    )
                )
        except Exception as err:
            raise RuntimeError(
                f"error while storing staking genesis validator descriptions: {err}"
            ) from err

        try:
            for validator in validators:
                self.db.save_validator_commission(
                    self._validator_commission(
                        height,
                        validator["operator_address"],
                        validator.get("commission"),
                        validator.get("min_self_delegation"),
                    )
                )
        except Exception as err:
            raise RuntimeError(
                f"error while storing staking genesis validators commissions: {err}"
            ) from err

    def _parse_genesis_transactions(self, height: int, app_state: Mapping[str, Any]) -> None:
        try:
            state = _module_genesis_state(app_state, GENUTIL_MODULE)
        except ValueError as err:
            raise ValueError(f"error while unmarshaling genutil state: {err}") from err

        for raw_tx in state.get("gen_txs") or []:
            try:
                tx = _json_object(raw_tx, "genesis tx")
            except ValueError as err:
                raise ValueError(f"error while unmarshaling genesis tx: {err}") from err
            for msg in _messages(tx):
                if msg.get("@type") != MSG_CREATE_VALIDATOR:
                    continue
                try:
                    self.store_validators_from_msg_create_validator(height, msg)
                except Exception as err:
                    raise RuntimeError(
                        f"error while storing validators from MsgCreateValidator: {err}"
                    ) from err

    # ----------------------------------------------------------------------------------------------
    # Messages

    def handle_msg(self, index: int, msg: Mapping[str, Any], tx: Mapping[str, Any]) -> None:
        """Refresh the validator touched by a create- or edit-validator message."""
        if not tx.get("logs"):
            return

        msg_type = msg.get("@type")
        if msg_type == MSG_CREATE_VALIDATOR:
            kind = "MsgCreateValidator"
        elif msg_type == MSG_EDIT_VALIDATOR:
            kind = "MsgEditValidator"
        else:
            return

        try:
            self.refresh_validator_infos(int(tx["height"]), msg["validator_address"])
        except Exception as err:
            raise RuntimeError(f"error while refreshing validator from {kind}: {err}") from err