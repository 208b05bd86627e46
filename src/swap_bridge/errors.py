"""Exception types raised by the swap bridge."""


class BridgeError(Exception):
    """Base class for bridge errors."""


class RpcError(BridgeError):
    """A chain node call failed."""

    def __init__(self, chain: str, method: str, message: str) -> None:
        self.chain = chain
        self.method = method
        super().__init__(f"[{chain}] {method} failed: {message}")


class RpcTimeout(RpcError):
    """A chain node call exceeded its deadline."""

    def __init__(self, chain: str, method: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(chain, method, f"timed out after {timeout}s")


class ExecutionReverted(RpcError):
    """The node refused a call because the contract reverted it; nothing was broadcast."""


class TransitionError(BridgeError):
    """A record was asked to move along an edge its state machine forbids."""
