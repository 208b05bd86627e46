import json
from pathlib import Path
from typing import Any, Sequence

from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import Web3Exception

from ..models import FillMethod

REQUIRED_EVENTS = ("SwapStarted", "SphynxSwapPairRegister")
CREATE_SWAP_PAIR = "createSwapPair"


class ContractUtility:
    """
    Utility for swap agent ABI loading and call encoding.

    Calls are encoded by an offline web3 contract object, so no node
    connection is needed to build a fill or createSwapPair call.
    """

    def __init__(self, abi: list[dict[str, Any]]):
        """
        Initialize the ContractUtility.

        Args:
            abi: Contract ABI as loaded from the contracts folder
        """
        if not isinstance(abi, list):
            raise ValueError("Contract ABI must be a list of entries")
        self.abi = abi
        self.contract: type[Contract] = Web3().eth.contract(abi=abi)

    @classmethod
    def for_contract(cls, contract_name: str) -> "ContractUtility":
        return cls(cls.get_contract_abi(contract_name))

    @staticmethod
    def get_contract_abi(contract_name: str) -> list:
        """Fetches ABI of the given contract from the contracts folder"""
        contract_path = (
            Path(__file__).parent.parent
            / "contracts"
            / f"{contract_name}.json"
        ).resolve()

        try:
            with contract_path.open() as file:
                contract_data = json.load(file)
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Cannot load ABI for {contract_name}: {e}") from e

        if "abi" not in contract_data:
            raise ValueError(f"{contract_path} has no 'abi' entry")
        return contract_data["abi"]

    def _entry(self, name: str, entry_type: str) -> dict[str, Any] | None:
        for entry in self.abi:
            if entry.get("type") == entry_type and entry.get("name") == name:
                return entry
        return None

    def encode_call(self, name: str, args: Sequence[Any]) -> bytes:
        """ABI-encode a function call: 4-byte selector followed by arguments.

        Raises:
            ValueError: If the function is unknown or the arguments do not
                match its inputs
        """
        try:
            data = self.contract.encode_abi(name, args=list(args))
        except (Web3Exception, TypeError, ValueError) as e:
            raise ValueError(f"Cannot encode {name} call: {e}") from e
        return bytes(HexBytes(data))

    def validate_agent(self, fill_method: FillMethod) -> None:
        """Check the ABI exposes what the bridge drives on an agent.

        Raises:
            ValueError: If an event or function is missing
        """
        for event in REQUIRED_EVENTS:
            if self._entry(event, "event") is None:
                raise ValueError(f"Event {event} not found in contract ABI")
        for function in (fill_method.value, CREATE_SWAP_PAIR):
            if self._entry(function, "function") is None:
                raise ValueError(f"Function {function} not found in contract ABI")
