from datetime import datetime, timezone
from decimal import Decimal

import pytest

from bdjuno.gov import GovModule
from bdjuno.gov_types import (
    PROPOSAL_STATUS_INVALID,
    DepositParams,
    Proposal,
    ProposalStakingPoolSnapshot,
    ProposalUpdate,
    TallyResult,
    VotingParams,
)
from bdjuno.types import Pool, Validator, ValidatorStatus, ValidatorVotingPower

PARAM_CHANGE = "/cosmos.params.v1beta1.ParameterChangeProposal"
POOL_SPEND = "/cosmos.distribution.v1beta1.CommunityPoolSpendProposal"


class FakeDb:
    def __init__(self):
        self.gov_params = []
        self.updates = []
        self.tallies = []
        self.pool_snapshots = []
        self.status_snapshots = []
        self.stored = {}
        self.last_height = 100

    def save_gov_params(self, params):
        self.gov_params.append(params)

    def get_proposal(self, proposal_id):
        return self.stored[proposal_id]

    def update_proposal(self, update):
        self.updates.append(update)

    def get_last_block_height(self):
        return self.last_height

    def save_tally_results(self, results):
        self.tallies.extend(results)

    def save_proposal_staking_pool_snapshot(self, snapshot):
        self.pool_snapshots.append(snapshot)

    def save_proposal_validators_statuses_snapshots(self, snapshots):
        self.status_snapshots.extend(snapshots)


class FakeSource:
    def __init__(self, proposals=None, error=None):
        self.proposals = proposals or {}
        self.error = error
        self.tally_heights = []

    def proposal(self, height, proposal_id):
        if self.error is not None:
            raise self.error
        return self.proposals[proposal_id]

    def tally_result(self, height, proposal_id):
        self.tally_heights.append(height)
        return {"yes": "10", "abstain": "2", "no": "3", "no_with_veto": "0"}

    def deposit_params(self, height):
        return {"min_deposit": [{"denom": "stake", "amount": "1"}], "max_deposit_period": "172800s"}

    def voting_params(self, height):
        return {"voting_period": "172800s"}

    def tally_params(self, height):
        return {"quorum": "0.334", "threshold": "0.5", "veto_threshold": "0.334"}


class Recorder:
    def __init__(self):
        self.heights = []
        self.refreshed = []

    def update_params(self, height):
        self.heights.append(height)

    def refresh_accounts(self, height, addresses):
        self.refreshed.append((height, addresses))


def _validator(cons):
    return Validator(
        cons_address=cons,
        operator_address="op-" + cons,
        cons_pubkey="pk",
        self_delegate_address="acc",
        max_change_rate=None,
        max_rate=None,
        height=10,
    )


def _status(cons, status, jailed):
    return ValidatorStatus(
        consensus_address=cons,
        consensus_pubkey="pk",
        status=status,
        jailed=jailed,
        tombstoned=False,
        height=10,
    )


class FakeStaking(Recorder):
    def __init__(self, validators, powers, statuses):
        super().__init__()
        self.validators = validators
        self.powers = powers
        self.statuses = statuses
        self.requested_status = None
        self.pool = Pool(bonded_tokens=500, not_bonded_tokens=20, height=10)

    def get_staking_pool(self, height):
        return self.pool

    def get_validators_with_status(self, height, status):
        self.requested_status = status
        return [{"operator_address": v.operator_address} for v in self.validators], self.validators

    def get_validators_voting_powers(self, height, block_validators):
        return self.powers

    def get_validators_statuses(self, height, validators):
        return self.statuses


def _proposal(status="PROPOSAL_STATUS_VOTING_PERIOD", content=None):
    return {
        "proposal_id": "7",
        "content": content or {"@type": "/cosmos.gov.v1beta1.TextProposal", "title": "t"},
        "status": status,
        "submit_time": "2021-09-13T08:48:15Z",
        "deposit_end_time": "2021-09-15T08:48:15Z",
        "voting_start_time": "2021-09-14T08:48:15Z",
        "voting_end_time": "2021-09-16T08:48:15Z",
    }


def _module(source, db, staking=None):
    recorders = {name: Recorder() for name in ("auth", "distr", "mint", "slashing")}
    module = GovModule(
        source,
        recorders["auth"],
        recorders["distr"],
        recorders["mint"],
        recorders["slashing"],
        staking or FakeStaking([], [], []),
        db,
    )
    return module, recorders


def test_name():
    module, _ = _module(FakeSource(), FakeDb())
    assert module.name() == "gov"


def test_update_params_stores_all_params():
    db = FakeDb()
    source = FakeSource()
    module, _ = _module(source, db)
    module.update_params(42)
    (params,) = db.gov_params
    assert params.height == 42
    assert params.deposit_params == DepositParams.from_chain(source.deposit_params(42))
    assert params.voting_params == VotingParams.from_chain(source.voting_params(42))
    assert params.tally_params.threshold == Decimal("0.5")


def test_update_params_wraps_source_errors():
    class Broken(FakeSource):
        def voting_params(self, height):
            raise OSError("down")

    module, _ = _module(Broken(), FakeDb())
    with pytest.raises(RuntimeError, match="error while getting gov voting params: down"):
        module.update_params(1)


def test_deleted_proposal_is_marked_invalid():
    db = FakeDb()
    start = datetime(2021, 1, 1, tzinfo=timezone.utc)
    end = datetime(2021, 1, 2, tzinfo=timezone.utc)
    db.stored[7] = Proposal(7, "gov", "Text", {}, "X", start, start, start, end, "")
    module, _ = _module(FakeSource(error=RuntimeError("rpc error: code = NotFound")), db)
    module.update_proposal(50, 7)
    assert db.updates == [ProposalUpdate(7, PROPOSAL_STATUS_INVALID, start, end)]


def test_other_proposal_errors_are_raised():
    module, _ = _module(FakeSource(error=RuntimeError("boom")), FakeDb())
    with pytest.raises(RuntimeError, match="error while getting proposal: boom"):
        module.update_proposal(50, 7)


def test_update_proposal_stores_status_and_tally():
    db = FakeDb()
    source = FakeSource({7: _proposal()})
    module, recorders = _module(source, db)
    module.update_proposal(50, 7)
    assert db.updates == [
        ProposalUpdate(
            7,
            "PROPOSAL_STATUS_VOTING_PERIOD",
            datetime(2021, 9, 14, 8, 48, 15, tzinfo=timezone.utc),
            datetime(2021, 9, 16, 8, 48, 15, tzinfo=timezone.utc),
        )
    ]
    assert source.tally_heights == [db.last_height]
    assert db.tallies == [TallyResult(7, "10", "2", "3", "0", db.last_height)]
    assert recorders["mint"].heights == []


def test_passed_param_change_updates_modules():
    db = FakeDb()
    content = {
        "@type": PARAM_CHANGE,
        "changes": [{"subspace": "mint"}, {"subspace": "staking"}, {"subspace": "gov"}, {"subspace": "bank"}],
    }
    staking = FakeStaking([], [], [])
    module, recorders = _module(FakeSource({7: _proposal("PROPOSAL_STATUS_PASSED", content)}), db, staking)
    module.update_proposal(50, 7)
    assert recorders["mint"].heights == [50]
    assert staking.heights == [50]
    assert recorders["distr"].heights == []
    assert recorders["slashing"].heights == []
    assert [p.height for p in db.gov_params] == [50]


def test_unpassed_param_change_does_nothing():
    content = {"@type": PARAM_CHANGE, "changes": [{"subspace": "mint"}]}
    module, recorders = _module(FakeSource({7: _proposal(content=content)}), FakeDb())
    module.update_proposal(50, 7)
    assert recorders["mint"].heights == []


def test_param_change_failure_is_wrapped():
    class Failing(Recorder):
        def update_params(self, height):
            raise OSError("fail")

    content = {"@type": PARAM_CHANGE, "changes": [{"subspace": "distribution"}]}
    source = FakeSource({7: _proposal("PROPOSAL_STATUS_PASSED", content)})
    module = GovModule(source, Recorder(), Failing(), Recorder(), Recorder(), FakeStaking([], [], []), FakeDb())
    with pytest.raises(RuntimeError, match="ParamChangeProposal distribution params : fail"):
        module.update_proposal(50, 7)


def test_community_pool_spend_refreshes_recipient():
    db = FakeDb()
    content = {"@type": POOL_SPEND, "recipient": "cosmos1recipient"}
    module, recorders = _module(FakeSource({7: _proposal(content=content)}), db)
    module.update_proposal(50, 7)
    assert recorders["auth"].refreshed == [(db.last_height, ["cosmos1recipient"])]


def test_snapshots_are_stored():
    db = FakeDb()
    staking = FakeStaking(
        [_validator("valA"), _validator("valB")],
        [ValidatorVotingPower("valB", 30, 10), ValidatorVotingPower("valA", 70, 10)],
        [_status("valA", 3, False), _status("valB", 3, True)],
    )
    module, _ = _module(FakeSource(), db, staking)
    module.update_proposal_snapshots(10, [], 7)
    assert db.pool_snapshots == [ProposalStakingPoolSnapshot(7, staking.pool)]
    assert staking.requested_status == "BOND_STATUS_BONDED"
    assert [(s.validator_cons_address, s.validator_voting_power, s.validator_jailed) for s in db.status_snapshots] == [
        ("valA", 70, False),
        ("valB", 30, True),
    ]
    assert all(s.proposal_id == 7 and s.height == 10 for s in db.status_snapshots)


def test_snapshot_missing_status_raises():
    staking = FakeStaking([_validator("valA")], [ValidatorVotingPower("valA", 1, 10)], [])
    module, _ = _module(FakeSource(), FakeDb(), staking)
    with pytest.raises(RuntimeError, match="error while searching for status"):
        module.update_proposal_snapshots(10, [], 7)


def test_snapshot_missing_voting_power_raises():
    staking = FakeStaking([_validator("valA")], [], [_status("valA", 3, False)])
    db = FakeDb()
    module, _ = _module(FakeSource(), db, staking)
    with pytest.raises(RuntimeError, match="error while searching for voting power"):
        module.update_proposal_snapshots(10, [], 7)
    assert db.status_snapshots == []