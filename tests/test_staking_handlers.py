import base64
import json
from decimal import Decimal

import pytest

from bdjuno.addresses import bech32_decode, bech32_encode, consensus_address
from bdjuno.staking import ED25519_PUBKEY_TYPE
from bdjuno.staking_handlers import (
    MSG_CREATE_VALIDATOR,
    MSG_EDIT_VALIDATOR,
    IndexingStakingModule,
)
from bdjuno.types import Pool, StakingParams, ValidatorSigningInfo, ValidatorVotingPower
from datetime import datetime, timezone

PUBKEY = bytes(range(32))
OPERATOR = bech32_encode("cosmosvaloper", bytes(range(20)))
CONS = consensus_address(PUBKEY, "cosmosvalcons")
RAW_CONS = bech32_decode(CONS)[1]


def chain_validator():
    return {
        "operator_address": OPERATOR,
        "consensus_pubkey": {"@type": ED25519_PUBKEY_TYPE, "key": base64.b64encode(PUBKEY).decode()},
        "jailed": False,
        "status": "BOND_STATUS_BONDED",
        "description": {"moniker": "node", "identity": ""},
        "commission": {"commission_rates": {"rate": "0.1", "max_rate": "0.2", "max_change_rate": "0.01"}},
        "min_self_delegation": "1",
    }


class FakeSource:
    def __init__(self, fail_validators=False, fail_pool=False):
        self.fail_validators = fail_validators
        self.fail_pool = fail_pool

    def get_validator(self, height, operator_address):
        if self.fail_validators:
            raise RuntimeError("boom")
        return chain_validator()

    def get_validators_with_status(self, height, status):
        if self.fail_validators:
            raise RuntimeError("boom")
        return [chain_validator()]

    def get_pool(self, height):
        if self.fail_pool:
            raise RuntimeError("pool down")
        return {"bonded_tokens": "10", "not_bonded_tokens": "5"}

    def get_params(self, height):
        return {}


class FakeSlashing:
    def get_signing_info(self, height, cons_address):
        return ValidatorSigningInfo(cons_address, 0, 0, datetime(1970, 1, 1, tzinfo=timezone.utc), True, 0, height)


class FakeDb:
    def __init__(self):
        self.validators_data = []
        self.validator_data = []
        self.descriptions = []
        self.commissions = []
        self.statuses = []
        self.voting_powers = []
        self.evidences = []
        self.pools = []
        self.staking_params = []

    def save_validators_data(self, validators):
        self.validators_data.append(list(validators))

    def save_validator_data(self, validator):
        self.validator_data.append(validator)

    def save_validator_description(self, description):
        self.descriptions.append(description)

    def save_validator_commission(self, commission):
        self.commissions.append(commission)

    def save_validators_statuses(self, statuses):
        self.statuses.extend(statuses)

    def save_validators_voting_powers(self, powers):
        self.voting_powers.extend(powers)

    def save_double_sign_evidence(self, evidence):
        self.evidences.append(evidence)

    def save_staking_pool(self, pool):
        self.pools.append(pool)

    def save_staking_params(self, params):
        self.staking_params.append(params)

    def has_validator(self, cons_address):
        return True


def make_module(source=None, db=None):
    return IndexingStakingModule(source or FakeSource(), FakeSlashing(), db or FakeDb(), avatar_lookup=lambda identity: "")


def vote(signature):
    return {
        "type": 1,
        "height": "42",
        "round": 0,
        "block_id": {"hash": "ab", "parts": {"total": 1, "hash": "cd"}},
        "validator_address": RAW_CONS.hex().upper(),
        "validator_index": 3,
        "signature": base64.b64encode(signature).decode(),
    }


def block(evidence):
    return {"block": {"header": {"height": "42"}, "evidence": {"evidence": evidence}}}


def test_handle_block_updates_everything():
    db = FakeDb()
    module = make_module(db=db)
    evidence = [{"type": "tendermint/DuplicateVoteEvidence", "value": {"vote_a": vote(b"\x01\x02"), "vote_b": vote(b"\x03")}}]
    validators = {"validators": [{"address": RAW_CONS.hex().upper(), "voting_power": "7"}]}

    module.handle_block(block(evidence), None, [], validators)

    assert db.validators_data[0][0].cons_address == CONS
    assert db.voting_powers == [ValidatorVotingPower(CONS, 7, 42)]
    assert db.pools == [Pool(10, 5, 42)]
    assert [status.tombstoned for status in db.statuses] == [True]
    assert db.statuses[0].status == 3
    [saved] = db.evidences
    assert saved.height == 42
    assert saved.vote_a.block_id == "AB:1:CD"
    assert saved.vote_a.signature == b"\x01\x02".hex()
    assert saved.vote_a.validator_address == CONS
    assert saved.vote_b.validator_index == 3


def test_handle_block_skips_other_evidence():
    db = FakeDb()
    module = make_module(db=db)
    evidence = [{"type": "tendermint/LightClientAttackEvidence", "value": {}}]
    module.handle_block(block(evidence), None, [], [])
    assert db.evidences == []
    assert db.pools == [Pool(10, 5, 42)]


def test_handle_block_validators_failure_raises():
    module = make_module(source=FakeSource(fail_validators=True))
    with pytest.raises(RuntimeError, match="error while updating validators"):
        module.handle_block(block([]), None, [], [])


def test_handle_block_pool_failure_is_only_logged():
    db = FakeDb()
    module = make_module(source=FakeSource(fail_pool=True), db=db)
    module.handle_block(block([]), None, [], [])
    assert db.pools == []
    assert len(db.statuses) == 1


def genesis_app_state():
    create_msg = {
        "@type": MSG_CREATE_VALIDATOR,
        "pubkey": {"@type": ED25519_PUBKEY_TYPE, "key": base64.b64encode(PUBKEY).decode()},
        "validator_address": OPERATOR,
        "delegator_address": "delegator",
        "description": {"moniker": "node", "identity": ""},
        "commission": {"rate": "0.1", "max_rate": "0.2", "max_change_rate": "0.01"},
        "min_self_delegation": "1",
    }
    gen_tx = {"body": {"messages": [{"@type": "/cosmos.bank.v1beta1.MsgSend"}, create_msg]}}
    return {
        "staking": json.dumps({"params": {"max_validators": 100}, "validators": [chain_validator()]}),
        "genutil": {"gen_txs": [gen_tx]},
    }


def test_handle_genesis_stores_params_gentxs_and_validators():
    db = FakeDb()
    module = make_module(db=db)
    module.handle_genesis({"initial_height": "1"}, genesis_app_state())

    assert db.staking_params == [StakingParams({"max_validators": 100}, 1)]
    [from_msg] = db.validator_data
    assert from_msg.cons_address == CONS
    assert from_msg.self_delegate_address == "delegator"
    assert [v.operator_address for v in db.validators_data[0]] == [OPERATOR]
    assert len(db.descriptions) == 2
    assert [c.commission for c in db.commissions] == [Decimal("0.1"), Decimal("0.1")]
    assert all(c.height == 1 for c in db.commissions)


def test_handle_genesis_missing_staking_state():
    with pytest.raises(ValueError, match="error while unmarshaling staking state"):
        make_module().handle_genesis({"initial_height": 1}, {})


def test_handle_genesis_missing_genutil_state():
    app_state = genesis_app_state()
    del app_state["genutil"]
    with pytest.raises(RuntimeError, match="error while storing genesis transactions"):
        make_module().handle_genesis({"initial_height": 1}, app_state)


def test_handle_msg_without_logs_does_nothing():
    db = FakeDb()
    make_module(db=db).handle_msg(0, {"@type": MSG_CREATE_VALIDATOR, "validator_address": OPERATOR}, {"height": 7, "logs": []})
    assert db.validators_data == []


@pytest.mark.parametrize("msg_type", [MSG_CREATE_VALIDATOR, MSG_EDIT_VALIDATOR])
def test_handle_msg_refreshes_validator(msg_type):
    db = FakeDb()
    make_module(db=db).handle_msg(0, {"@type": msg_type, "validator_address": OPERATOR}, {"height": 7, "logs": [{}]})
    assert [v.height for v in db.validators_data[0]] == [7]
    assert db.commissions[0].val_address == OPERATOR


def test_handle_msg_ignores_other_messages():
    db = FakeDb()
    make_module(db=db).handle_msg(0, {"@type": "/cosmos.bank.v1beta1.MsgSend"}, {"height": 7, "logs": [{}]})
    assert db.descriptions == []


def test_handle_msg_failure_is_wrapped():
    module = make_module(source=FakeSource(fail_validators=True))
    with pytest.raises(RuntimeError, match="MsgEditValidator"):
        module.handle_msg(0, {"@type": MSG_EDIT_VALIDATOR, "validator_address": OPERATOR}, {"height": 7, "logs": [{}]})