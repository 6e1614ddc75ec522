"""Interface shared by the valuation engines."""

import dataclasses
from typing import Any, Protocol, runtime_checkable

from option_calibration.utils.errors import InvalidContractError


@runtime_checkable
class ValuationEngine(Protocol):
    """Minimum capability the calibration solver needs from an engine."""

    name: str
    contract: Any

    def price(self) -> Any:
        """Value the engine's contract."""

    def replace(self, **changes: Any) -> "ValuationEngine":
        """Return an engine with the given engine or contract fields overridden."""


class OverridableEngine:
    """
    Functional-update support for frozen engine dataclasses.

    Keywords naming an engine field (e.g. ``steps``) update the engine;
    every other keyword is forwarded to the contract's own ``replace``.
    """

    def replace(self, **changes: Any):
        engine_fields = {field.name for field in dataclasses.fields(self)} - {"contract"}
        contract_fields = {field.name for field in dataclasses.fields(self.contract)}

        engine_changes = {}
        contract_changes = {}
        for name, value in changes.items():
            if name in engine_fields:
                engine_changes[name] = value
            elif name in contract_fields:
                contract_changes[name] = value
            else:
                raise InvalidContractError(name, value, "unknown engine or contract parameter")

        contract = self.contract
        if contract_changes:
            contract = contract.replace(**contract_changes)
        return dataclasses.replace(self, contract=contract, **engine_changes)
