"""Module recording which indexing modules are enabled."""

from __future__ import annotations

from typing import Any, Iterable


class EnabledModulesModule:
    """Stores the list of enabled modules in the database."""

    def __init__(self, chain_modules: Iterable[str], db: Any) -> None:
        self.chain_modules = list(chain_modules)
        self.db = db

    def name(self) -> str:
        return "modules"

    def run_additional_operations(self) -> None:
        """Save the enabled modules."""
        self.db.insert_enable_modules(list(self.chain_modules))