"""Module indexing the slashing parameters and the validators' signing infos."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

from bdjuno.types import SlashingParams, ValidatorSigningInfo

_log = logging.getLogger(__name__)

MODULE_NAME = "slashing"

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_RFC3339 = re.compile(
    r"(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})"
)


class SlashingSource(Protocol):
    """Where the slashing module reads the chain state from."""

    def get_signing_info(self, height: int, cons_address: str) -> Mapping[str, Any]:
        """Return the signing info of the validator with the given consensus address."""

    def get_signing_infos(self, height: int) -> Sequence[Mapping[str, Any]]:
        """Return the signing infos of all the validators."""

    def get_params(self, height: int) -> Mapping[str, Any]:
        """Return the slashing parameters."""


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


def _signing_info(info: Mapping[str, Any], height: int) -> ValidatorSigningInfo:
    return ValidatorSigningInfo(
        validator_address=str(info.get("address") or ""),
        start_height=int(info.get("start_height") or 0),
        index_offset=int(info.get("index_offset") or 0),
        jailed_until=_parse_time(info.get("jailed_until")),
        tombstoned=bool(info.get("tombstoned", False)),
        missed_blocks_counter=int(info.get("missed_blocks_counter") or 0),
        height=height,
    )


def _block_height(block: Mapping[str, Any]) -> int:
    inner = block.get("block", block)
    return int(inner["header"]["height"])


def _module_genesis_state(app_state: Mapping[str, Any], module: str) -> Mapping[str, Any]:
    raw = app_state.get(module)
    if raw is None:
        raise ValueError(f"missing {module} genesis state")
    if isinstance(raw, (str, bytes, bytearray)):
        raw = json.loads(raw)
    if not isinstance(raw, Mapping):
        raise ValueError(f"{module} genesis state is not a JSON object")
    return raw


class SlashingModule:
    """Indexes the slashing parameters and the signing infos of the validators."""

    def __init__(self, source: SlashingSource, db: Any) -> None:
        self.source = source
        self.db = db

    def name(self) -> str:
        return MODULE_NAME

    def handle_block(
        self,
        block: Mapping[str, Any],
        block_results: Any,
        txs: Sequence[Any] | None,
        validators: Any,
    ) -> None:
        """Store the signing infos of all the validators at the block height."""
        height = _block_height(block)
        try:
            self._update_signing_info(height)
        except Exception as err:
            raise RuntimeError(f"error while updating signing info: {err}") from err

    def _update_signing_info(self, height: int) -> None:
        _log.debug("updating signing info at height %d", height)
        infos = [_signing_info(info, height) for info in self.source.get_signing_infos(height)]
        self.db.save_validators_signing_infos(infos)

    def handle_genesis(self, doc: Mapping[str, Any], app_state: Mapping[str, Any]) -> None:
        """Store the slashing parameters found inside the genesis state."""
        _log.debug("parsing genesis")
        try:
            state = _module_genesis_state(app_state, MODULE_NAME)
        except ValueError as err:
            raise ValueError(f"error while reading slashing genesis data: {err}") from err

        params = SlashingParams(
            params=dict(state.get("params") or {}),
            height=int(doc.get("initial_height") or 0),
        )
        try:
            self.db.save_slashing_params(params)
        except Exception as err:
            raise RuntimeError(f"error while storing genesis slashing params: {err}") from err

    def update_params(self, height: int) -> None:
        """Fetch the slashing parameters at ``height`` and store them."""
        _log.debug("updating params at height %d", height)
        try:
            params = self.source.get_params(height)
        except Exception as err:
            raise RuntimeError(f"error while getting params: {err}") from err
        self.db.save_slashing_params(SlashingParams(params=params, height=height))

    def get_signing_info(self, height: int, cons_address: str) -> ValidatorSigningInfo:
        """Return the signing info of the validator with the given consensus address."""
        info = self.source.get_signing_info(height, cons_address)
        return _signing_info(info, height)