"""Receipt tracking shared by the swap, pair and retry state machines."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .chain_context import ChainContext
from .errors import RpcError
from .transactions import ReceiptState, check_receipt

logger = logging.getLogger(__name__)

Transition = Callable[..., Awaitable[bool]]
BumpAttempts = Callable[[int, Any], Awaitable[int | None]]


@dataclass(frozen=True, slots=True)
class TrackStatuses:
    """The four statuses a state machine uses after broadcasting."""
    sending: Enum
    sent: Enum
    success: Enum
    fail: Enum


async def track_sent_record(
    chain: ChainContext,
    record: Any,
    tx_hash: str | None,
    statuses: TrackStatuses,
    transition: Transition,
    bump_attempts: BumpAttempts,
    retry_budget: int,
    height_field: str,
    label: str,
) -> Enum | None:
    """Poll the receipt of a broadcast record and move it accordingly.

    sending always passes through sent before a terminal status. A missing
    receipt costs one attempt of the retry budget; once the budget is spent
    the record ends at the fail status. RPC errors change nothing.

    Returns:
        The status the record ended at if it moved, else None
    """
    if tx_hash:
        try:
            outcome = await check_receipt(chain, tx_hash)
        except RpcError as e:
            logger.warning(f"{label}: receipt lookup failed, will retry: {e}")
            return None
        state = outcome.state
        values = {height_field: outcome.block_number}
    else:
        state = ReceiptState.FAILED
        values = {}

    current = statuses.sending if record.status == statuses.sending.value else statuses.sent
    if current is statuses.sending:
        if not await transition(record.id, statuses.sending, statuses.sent):
            return None
        logger.info(f"{label}: {statuses.sending.value} -> {statuses.sent.value}")

    match state:
        case ReceiptState.SUCCESS:
            target, note = statuses.success, ""
        case ReceiptState.FAILED:
            target = statuses.fail
            note = f"tx {tx_hash} reverted" if tx_hash else "no transaction hash recorded"
        case ReceiptState.PENDING:
            attempts = await bump_attempts(record.id, statuses.sent)
            if attempts is None or attempts < retry_budget:
                return statuses.sent if current is statuses.sending else None
            target, note = statuses.fail, f"no receipt for tx {tx_hash} after {attempts} polls"

    if not await transition(record.id, statuses.sent, target, log=note, **values):
        return None
    logger.info(f"{label}: {statuses.sent.value} -> {target.value} {note}".rstrip())
    return target
