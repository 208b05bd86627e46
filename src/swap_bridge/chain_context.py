"""Everything the bridge needs to act on one chain, passed around as one value."""

from dataclasses import dataclass

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .config import ChainConfig
from .models import FillMethod
from .utils.chain_client import ChainClient
from .utils.contract_utility import ContractUtility


@dataclass(slots=True)
class ChainContext:
    """Chain id, client, signing key, agent address and ABI for one chain."""

    config: ChainConfig
    client: ChainClient
    contract: ContractUtility
    account: LocalAccount | None = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def chain_id(self) -> int:
        return self.config.chain_id

    @property
    def agent_address(self) -> str:
        return self.config.swap_agent_address

    @property
    def fill_method(self) -> FillMethod:
        return self.config.fill_method

    @property
    def confirm_num(self) -> int:
        return self.config.confirm_num

    @property
    def sender_address(self) -> str:
        if self.account is None:
            raise ValueError(f"No signing key loaded for chain {self.name}")
        return self.account.address

    def load_key(self, private_key: str) -> None:
        """Attach the signing key; the key stays in process memory only."""
        try:
            self.account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid signing key for chain {self.name}: {e}") from None
