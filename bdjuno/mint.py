"""Module indexing the mint parameters and the inflation."""

from __future__ import annotations

import json
import logging
from datetime import time
from typing import Any, Mapping

from bdjuno.types import MintParams
from bdjuno.utils import Scheduler, watch_method

_log = logging.getLogger(__name__)

MODULE_NAME = "mint"


def _initial_height(doc: Mapping[str, Any]) -> int:
    return int(doc.get("initial_height") or 0)


def _module_genesis_state(app_state: Mapping[str, Any], module: str) -> Mapping[str, Any]:
    raw = app_state.get(module)
    if raw is None:
        raise ValueError(f"missing {module} genesis state")
    if isinstance(raw, (str, bytes, bytearray)):
        raw = json.loads(raw)
    if not isinstance(raw, Mapping):
        raise ValueError(f"{module} genesis state is not a JSON object")
    return raw


class MintModule:
    """Indexes the mint module parameters and the current inflation."""

    def __init__(self, source: Any, db: Any) -> None:
        self.source = source
        self.db = db

    def name(self) -> str:
        return MODULE_NAME

    def handle_genesis(self, doc: Mapping[str, Any], app_state: Mapping[str, Any]) -> None:
        """Store the mint parameters found inside the genesis state."""
        _log.debug("parsing genesis")
        try:
            state = _module_genesis_state(app_state, MODULE_NAME)
        except ValueError as err:
            raise ValueError(f"error while reading mint genesis data: {err}") from err

        params = MintParams(params=dict(state.get("params") or {}), height=_initial_height(doc))
        try:
            self.db.save_mint_params(params)
        except Exception as err:
            raise RuntimeError(f"error while storing genesis mint params: {err}") from err

    def update_params(self, height: int) -> None:
        """Fetch the mint parameters at ``height`` and store them."""
        _log.debug("updating params at height %d", height)
        try:
            params = self.source.params(height)
        except Exception as err:
            raise RuntimeError(f"error while getting params: {err}") from err
        self.db.save_mint_params(MintParams(params=params, height=height))

    def update_inflation(self) -> None:
        """Fetch the inflation at the latest stored height and store it."""
        _log.debug("getting inflation data")
        height = self.db.get_last_block_height()
        inflation = self.source.get_inflation(height)
        self.db.save_inflation(inflation, height)

    def register_periodic_operations(self, scheduler: Scheduler) -> None:
        """Update the inflation every day at midnight."""
        _log.debug("setting up periodic tasks")
        scheduler.daily_at(time(0, 0), lambda: watch_method(self.update_inflation))