import dataclasses
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from bdjuno.types import (
    Account,
    AccountBalance,
    ConsensusEvent,
    DistributionParams,
    DoubleSignEvidence,
    DoubleSignVote,
    FeeGrant,
    Genesis,
    GrantRemoval,
    MintParams,
    Pool,
    SlashingParams,
    StakingParams,
    Token,
    TokenPrice,
    TokenUnit,
    Validator,
    ValidatorCommission,
    ValidatorDescription,
    ValidatorSigningInfo,
    ValidatorStatus,
    ValidatorVotingPower,
)

UTC = timezone.utc


def _signing_info(**overrides):
    values = dict(
        validator_address="cosmosvalcons1abc",
        start_height=10,
        index_offset=3,
        jailed_until=datetime(2021, 1, 1, tzinfo=UTC),
        tombstoned=False,
        missed_blocks_counter=2,
        height=100,
    )
    values.update(overrides)
    return ValidatorSigningInfo(**values)


def test_account_holds_address():
    assert Account("cosmos1xyz").address == "cosmos1xyz"


def test_account_balance_fields():
    balance = AccountBalance("cosmos1xyz", [("uatom", 5)], 7)
    assert balance.balance == [("uatom", 5)]
    assert balance.height == 7


def test_genesis_equal_same_instant_other_zone():
    moment = datetime(2020, 1, 1, 12, 0, tzinfo=UTC)
    shifted = moment.astimezone(timezone(timedelta(hours=2)))
    assert Genesis("chain", moment, 1) == Genesis("chain", shifted, 1)


def test_genesis_differs_on_height():
    moment = datetime(2020, 1, 1, tzinfo=UTC)
    assert Genesis("chain", moment, 1) != Genesis("chain", moment, 2)


def test_consensus_event_equality():
    assert ConsensusEvent(5, 0, "RoundStepPropose") == ConsensusEvent(5, 0, "RoundStepPropose")
    assert ConsensusEvent(5, 0, "RoundStepPropose") != ConsensusEvent(5, 1, "RoundStepPropose")


def test_records_are_frozen():
    event = ConsensusEvent(5, 0, "step")
    with pytest.raises(dataclasses.FrozenInstanceError):
        event.height = 6
    assert event.height == 5
    assert event == ConsensusEvent(5, 0, "step")


@pytest.mark.parametrize("cls", [DistributionParams, MintParams, SlashingParams, StakingParams])
def test_params_records(cls):
    params = {"key": "value"}
    record = cls(params, 42)
    assert record.params == params
    assert record.height == 42


def test_fee_grant_and_removal():
    grant = FeeGrant("granter1", "grantee1", {"spend_limit": []}, 3)
    removal = GrantRemoval("grantee1", "granter1", 4)
    assert (grant.granter, grant.grantee) == (removal.granter, removal.grantee)


def test_token_unit_defaults_are_independent():
    first = TokenUnit("uatom", 0)
    second = TokenUnit("atom", 6)
    first.aliases.append("microatom")
    assert second.aliases == []
    assert first.price_id == ""


def test_token_holds_units_in_order():
    units = [TokenUnit("uatom", 0), TokenUnit("atom", 6, ["ATOM"], "cosmos")]
    token = Token("Atom", units)
    assert [unit.denom for unit in token.units] == ["uatom", "atom"]
    assert token.units[1].price_id == "cosmos"


def test_token_price_replace_timestamp():
    price = TokenPrice("atom", 31.16, 8809250407, datetime(2021, 9, 13, tzinfo=UTC))
    later = datetime(2021, 9, 14, tzinfo=UTC)
    updated = dataclasses.replace(price, timestamp=later)
    assert updated.timestamp == later
    assert updated.market_cap == price.market_cap


def test_signing_info_equal_and_differs():
    assert _signing_info() == _signing_info()
    assert _signing_info() != _signing_info(tombstoned=True)
    assert _signing_info() != _signing_info(missed_blocks_counter=3)


def test_double_sign_evidence_keeps_vote_order():
    vote_a = DoubleSignVote(1, 10, 0, "blockA", "cosmosvalcons1a", 0, "aa")
    vote_b = DoubleSignVote(1, 10, 0, "blockB", "cosmosvalcons1a", 0, "bb")
    evidence = DoubleSignEvidence(10, vote_a, vote_b)
    assert evidence.vote_a.block_id == "blockA"
    assert evidence.vote_b.signature == "bb"


def test_pool_is_hashable():
    assert len({Pool(100, 50, 1), Pool(100, 50, 1)}) == 1


def test_validator_fields():
    validator = Validator(
        "cosmosvalcons1a", "cosmosvaloper1a", "pubkey", "cosmos1a",
        Decimal("0.01"), Decimal("0.2"), 9,
    )
    assert validator.operator_address == "cosmosvaloper1a"
    assert validator.max_rate == Decimal("0.2")


def test_validator_description_commission_power_status():
    description = ValidatorDescription("cosmosvaloper1a", {"moniker": "val"}, "", 1)
    commission = ValidatorCommission("cosmosvaloper1a", Decimal("0.1"), 1, 1)
    power = ValidatorVotingPower("cosmosvalcons1a", 1000, 1)
    status = ValidatorStatus("cosmosvalcons1a", "pubkey", 3, False, False, 1)
    assert description.operator_address == commission.val_address
    assert power.consensus_address == status.consensus_address
    assert status.status == 3