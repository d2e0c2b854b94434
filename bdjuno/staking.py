"""Module indexing validators, their statuses, voting powers and the staking pool."""

from __future__ import annotations

import base64
import binascii
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

from bdjuno.addresses import bech32_decode, bech32_encode, consensus_address
from bdjuno.keybase import get_avatar_url
from bdjuno.types import (
    DO_NOT_MODIFY_DESC,
    Pool,
    StakingParams,
    Validator,
    ValidatorCommission,
    ValidatorDescription,
    ValidatorSigningInfo,
    ValidatorStatus,
    ValidatorVotingPower,
)

_log = logging.getLogger(__name__)

MODULE_NAME = "staking"

BOND_STATUS_UNSPECIFIED = "BOND_STATUS_UNSPECIFIED"
BOND_STATUS_UNBONDED = "BOND_STATUS_UNBONDED"
BOND_STATUS_UNBONDING = "BOND_STATUS_UNBONDING"
BOND_STATUS_BONDED = "BOND_STATUS_BONDED"

_BOND_STATUS_VALUES = {
    BOND_STATUS_UNSPECIFIED: 0,
    BOND_STATUS_UNBONDED: 1,
    BOND_STATUS_UNBONDING: 2,
    BOND_STATUS_BONDED: 3,
}

ED25519_PUBKEY_TYPE = "/cosmos.crypto.ed25519.PubKey"
_OPERATOR_SUFFIX = "valoper"
_CONSENSUS_SUFFIX = "valcons"
_NOT_FOUND = "NotFound"


class StakingSource(Protocol):
    """Where the staking module reads the chain state from."""

    def get_validator(self, height: int, operator_address: str) -> Mapping[str, Any]:
        """Return the validator having the given operator address."""

    def get_validators_with_status(self, height: int, status: str) -> Sequence[Mapping[str, Any]]:
        """Return all the validators with the given status; an empty status means all."""

    def get_delegations_with_pagination(
        self, height: int, delegator: str, pagination: Mapping[str, Any] | None
    ) -> Any:
        """Return a page of the delegations made by a delegator."""

    def get_redelegations(self, height: int, request: Mapping[str, Any]) -> Any:
        """Return the redelegations matching the request."""

    def get_pool(self, height: int) -> Mapping[str, Any]:
        """Return the staking pool."""

    def get_params(self, height: int) -> Mapping[str, Any]:
        """Return the staking parameters."""

    def get_unbonding_delegations(
        self, height: int, delegator: str, pagination: Mapping[str, Any] | None
    ) -> Any:
        """Return a page of the unbonding delegations of a delegator."""

    def get_validator_delegations_with_pagination(
        self, height: int, validator: str, pagination: Mapping[str, Any] | None
    ) -> Any:
        """Return a page of the delegations made to a validator."""

    def get_unbonding_delegations_from_validator(
        self, height: int, validator: str, pagination: Mapping[str, Any] | None
    ) -> Any:
        """Return a page of the unbonding delegations from a validator."""


class SigningInfoProvider(Protocol):
    """The slashing functionality the staking module relies on."""

    def get_signing_info(self, height: int, cons_address: str) -> ValidatorSigningInfo:
        """Return the signing info of the validator with the given consensus address."""


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as err:
        raise ValueError(f"invalid decimal: {value!r}") from err


def _integer(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(str(value))
    except ValueError as err:
        raise ValueError(f"invalid integer: {value!r}") from err


def _pubkey_bytes(value: Any) -> bytes:
    """Unpack an ed25519 consensus public key given as bytes or as its JSON form."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, Mapping):
        raise ValueError(f"invalid public key: {value!r}")
    key_type = value.get("@type", ED25519_PUBKEY_TYPE)
    if key_type != ED25519_PUBKEY_TYPE:
        raise ValueError(f"unsupported public key type: {key_type}")
    key = value.get("key")
    if isinstance(key, (bytes, bytearray)):
        return bytes(key)
    if not isinstance(key, str):
        raise ValueError("public key has no key")
    try:
        return base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"invalid public key encoding: {err}") from err


def _pubkey_string(key: bytes) -> str:
    return f"PubKeyEd25519{{{key.hex().upper()}}}"


def _account_prefix(operator_address: str) -> str:
    hrp, _ = bech32_decode(operator_address)
    if not hrp.endswith(_OPERATOR_SUFFIX) or hrp == _OPERATOR_SUFFIX:
        raise ValueError(f"invalid operator address prefix: {hrp}")
    return hrp[: -len(_OPERATOR_SUFFIX)]


def _commission_rates(commission: Mapping[str, Any] | None) -> Mapping[str, Any]:
    commission = commission or {}
    return commission.get("commission_rates", commission) or {}


def _bond_status(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    try:
        return _BOND_STATUS_VALUES[value]
    except KeyError:
        raise ValueError(f"invalid bond status: {value!r}") from None


def _block_address(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return bytes.fromhex(str(value))
    except ValueError as err:
        raise ValueError(f"invalid validator address: {value!r}") from err


class StakingModule:
    """Reads validators and staking data from the chain and stores them."""

    def __init__(
        self,
        source: StakingSource,
        slashing_module: SigningInfoProvider,
        db: Any,
        avatar_lookup: Callable[[str], str] = get_avatar_url,
    ) -> None:
        self.source = source
        self.slashing_module = slashing_module
        self.db = db
        self._avatar_lookup = avatar_lookup

    def name(self) -> str:
        return MODULE_NAME

    # ----------------------------------------------------------------------------------------------
    # Conversions

    def _consensus_pubkey(self, validator: Mapping[str, Any]) -> bytes:
        try:
            return _pubkey_bytes(validator.get("consensus_pubkey"))
        except ValueError as err:
            raise ValueError(f"error while getting validator consensus pub key: {err}") from err

    def _consensus_address(self, validator: Mapping[str, Any]) -> str:
        pubkey = self._consensus_pubkey(validator)
        prefix = _account_prefix(validator["operator_address"]) + _CONSENSUS_SUFFIX
        return consensus_address(pubkey, prefix)

    def _convert_validator(self, height: int, validator: Mapping[str, Any]) -> Validator:
        operator = validator["operator_address"]
        try:
            cons_address = self._consensus_address(validator)
        except ValueError as err:
            raise ValueError(f"error while getting validator consensus address: {err}") from err
        pubkey = self._consensus_pubkey(validator)
        _, operator_bytes = bech32_decode(operator)
        rates = _commission_rates(validator.get("commission"))
        return Validator(
            cons_address=cons_address,
            operator_address=operator,
            cons_pubkey=_pubkey_string(pubkey),
            self_delegate_address=bech32_encode(_account_prefix(operator), operator_bytes),
            max_change_rate=_decimal(rates.get("max_change_rate")),
            max_rate=_decimal(rates.get("max_rate")),
            height=height,
        )

    def _convert_validator_description(
        self, height: int, operator_address: str, description: Mapping[str, Any]
    ) -> ValidatorDescription:
        """Build a description, looking the avatar up; a failed lookup gives no avatar."""
        identity = (description or {}).get("identity") or ""
        if identity == DO_NOT_MODIFY_DESC:
            avatar_url = DO_NOT_MODIFY_DESC
        else:
            try:
                avatar_url = self._avatar_lookup(identity)
            except Exception:
                avatar_url = ""
        return ValidatorDescription(operator_address, description, avatar_url, height)

    def _validator_commission(
        self, height: int, operator_address: str, commission: Mapping[str, Any] | None, min_self: Any
    ) -> ValidatorCommission:
        rates = _commission_rates(commission)
        return ValidatorCommission(
            val_address=operator_address,
            commission=_decimal(rates.get("rate")),
            min_self_delegation=_integer(min_self),
            height=height,
        )

    # ----------------------------------------------------------------------------------------------
    # Validators

    def refresh_validator_infos(self, height: int, operator_address: str) -> None:
        """Refresh the data, description and commission of a validator."""
        staking_validator = self.source.get_validator(height, operator_address)
        try:
            validator = self._convert_validator(height, staking_validator)
        except ValueError as err:
            raise ValueError(f"error while converting validator: {err}") from err

        operator = staking_validator["operator_address"]
        description = self._convert_validator_description(
            height, operator, staking_validator.get("description") or {}
        )

        self.db.save_validators_data([validator])
        self.db.save_validator_description(description)
        self.db.save_validator_commission(
            self._validator_commission(
                height,
                operator,
                staking_validator.get("commission"),
                staking_validator.get("min_self_delegation"),
            )
        )

    def get_validators_with_status(
        self, height: int, status: str
    ) -> tuple[list[Mapping[str, Any]], list[Validator]]:
        """Return the chain validators with the given status and their converted form."""
        validators = list(self.source.get_validators_with_status(height, status))
        converted = []
        for validator in validators:
            try:
                converted.append(self._convert_validator(height, validator))
            except ValueError as err:
                raise ValueError(f"error while converting validator: {err}") from err
        return validators, converted

    def _get_validators(self, height: int) -> tuple[list[Mapping[str, Any]], list[Validator]]:
        return self.get_validators_with_status(height, "")

    def _update_validators(self, height: int) -> list[Mapping[str, Any]]:
        """Store the validators present at ``height`` and return them as read from the chain."""
        _log.debug("updating validators at height %d", height)
        try:
            chain_validators, validators = self._get_validators(height)
        except Exception as err:
            raise RuntimeError(f"error while getting validator: {err}") from err
        self.db.save_validators_data(validators)
        return chain_validators

    def get_validators_statuses(
        self, height: int, validators: Iterable[Mapping[str, Any]]
    ) -> list[ValidatorStatus]:
        """Return the status of each validator; a missing signing info means not tombstoned."""
        statuses = []
        for validator in validators:
            try:
                cons_address = self._consensus_address(validator)
            except ValueError as err:
                raise ValueError(f"error while getting validator consensus address: {err}") from err
            try:
                pubkey = self._consensus_pubkey(validator)
            except ValueError as err:
                raise ValueError(f"error while getting validator consensus public key: {err}") from err

            tombstoned = False
            try:
                tombstoned = self.slashing_module.get_signing_info(height, cons_address).tombstoned
            except Exception as err:
                if _NOT_FOUND not in str(err):
                    raise RuntimeError(f"error while getting validator signing info: {err}") from err

            statuses.append(
                ValidatorStatus(
                    consensus_address=cons_address,
                    consensus_pubkey=_pubkey_string(pubkey),
                    status=_bond_status(validator.get("status", BOND_STATUS_UNSPECIFIED)),
                    jailed=bool(validator.get("jailed", False)),
                    tombstoned=tombstoned,
                    height=height,
                )
            )
        return statuses

    def get_validators_voting_powers(
        self, height: int, block_validators: Iterable[Mapping[str, Any]]
    ) -> list[ValidatorVotingPower]:
        """Return the voting power of every stored validator, as found in the block validators.

        Each block validator carries an ``address`` (bytes or hex) and a ``voting_power``.
        Validators missing from the block get zero; those not stored yet are left out.
        """
        chain_validators, _ = self._get_validators(height)
        powers: dict[bytes, int] = {}
        for block_validator in block_validators:
            powers[_block_address(block_validator["address"])] = int(block_validator["voting_power"])

        voting_powers = []
        for validator in chain_validators:
            cons_address = self._consensus_address(validator)
            _, raw_address = bech32_decode(cons_address)
            if not self.db.has_validator(cons_address):
                continue
            voting_powers.append(
                ValidatorVotingPower(cons_address, powers.get(raw_address, 0), height)
            )
        return voting_powers

    # ----------------------------------------------------------------------------------------------
    # Pool and parameters

    def get_staking_pool(self, height: int) -> Pool:
        """Return the staking pool at ``height``."""
        try:
            pool = self.source.get_pool(height)
        except Exception as err:
            raise RuntimeError(f"error while getting staking pool: {err}") from err
        return Pool(
            bonded_tokens=int(str(pool["bonded_tokens"])),
            not_bonded_tokens=int(str(pool["not_bonded_tokens"])),
            height=height,
        )

    def update_params(self, height: int) -> None:
        """Fetch the staking parameters at ``height`` and store them."""
        _log.debug("updating params at height %d", height)
        try:
            params = self.source.get_params(height)
        except Exception as err:
            raise RuntimeError(f"error while getting params: {err}") from err
        self.db.save_staking_params(StakingParams(params=params, height=height))

    # ----------------------------------------------------------------------------------------------
    # Genesis transactions

    def store_validators_from_msg_create_validator(self, height: int, msg: Mapping[str, Any]) -> None:
        """Store the validator, description and commission declared by a create-validator message."""
        try:
            pubkey = _pubkey_bytes(msg.get("pubkey"))
        except ValueError as err:
            raise ValueError(f"error while unpacking pub key: {err}") from err

        description = msg.get("description") or {}
        try:
            avatar_url = self._avatar_lookup(description.get("identity") or "")
        except Exception as err:
            raise RuntimeError(f"error while getting Avatar URL: {err}") from err

        operator = msg["validator_address"]
        rates = _commission_rates(msg.get("commission"))
        self.db.save_validator_data(
            Validator(
                cons_address=consensus_address(pubkey, _account_prefix(operator) + _CONSENSUS_SUFFIX),
                operator_address=operator,
                cons_pubkey=_pubkey_string(pubkey),
                self_delegate_address=msg.get("delegator_address") or "",
                max_change_rate=_decimal(rates.get("max_change_rate")),
                max_rate=_decimal(rates.get("max_rate")),
                height=height,
            )
        )
        self.db.save_validator_description(
            ValidatorDescription(operator, description, avatar_url, height)
        )
        self.db.save_validator_commission(
            self._validator_commission(
                height, operator, msg.get("commission"), msg.get("min_self_delegation")
            )
        )