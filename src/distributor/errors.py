"""Failures that abort a funding run.

Every error carries the phase it happened in so callers can tell a
lookup problem from an exhausted funding account or a failed transfer.
"""

from distributor.constants import FundingPhase
from distributor.models import Transfer


class DistributorError(Exception):
    phase: FundingPhase | None = None


class AccountLookupError(DistributorError):
    """The ledger state of an account could not be read."""

    def __init__(self, address: str, phase: FundingPhase = FundingPhase.SCAN, reason: str | None = None):
        self.address = address
        self.phase = phase
        msg = f"unable to fetch account {address} during {phase}"
        super().__init__(f"{msg}: {reason}" if reason else msg)


class InsufficientFundsError(DistributorError):
    """The funding account cannot cover even the cheapest top-up."""

    phase = FundingPhase.ALLOCATE

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(
            f"insufficient distributor funds: balance {balance} drops, cheapest transfer needs {required}"
        )


class TransferError(DistributorError):
    """A transfer failed mid-run.

    ``funded`` lists the accounts whose transfers were already committed
    before this one failed; those must not be funded again.
    """

    action = "process"

    def __init__(self, transfer: Transfer, funded: list | None = None, reason: str | None = None):
        self.transfer = transfer
        self.funded = list(funded or [])
        msg = f"unable to {self.action} transfer {transfer}"
        super().__init__(f"{msg}: {reason}" if reason else msg)


class SigningError(TransferError):
    phase = FundingPhase.SIGN
    action = "sign"


class BroadcastError(TransferError):
    phase = FundingPhase.SUBMIT
    action = "broadcast"
