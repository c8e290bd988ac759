"""Funding run data structures.

All amounts are integer drops.
"""

from dataclasses import dataclass, field
from typing import Protocol

from xrpl.models.transactions import Payment

import distributor.constants as C


class HasAddress(Protocol):
    """Anything that can name a ledger account, e.g. ``xrpl.wallet.Wallet``."""

    @property
    def address(self) -> str: ...


@dataclass(frozen=True)
class Participant:
    """An account known only by its address."""

    address: str


@dataclass(frozen=True)
class LedgerAccount:
    """Balance and next sequence number of an account as read from the ledger."""

    address: str
    balance: int  # drops
    sequence: int

    @classmethod
    def from_account_info(cls, result: dict) -> "LedgerAccount":
        """Parse the 'result' field of an account_info response."""
        data = result["account_data"]
        return cls(
            address=data["Account"],
            balance=int(data["Balance"]),
            sequence=int(data["Sequence"]),
        )


@dataclass(frozen=True)
class ShortAccount:
    account: HasAddress
    missing: int  # drops, always > 0

    @property
    def address(self) -> str:
        return self.account.address


@dataclass
class Transfer:
    source: str
    destination: str
    amount: int
    fee: int
    state: C.TransferState = C.TransferState.CREATED

    @property
    def cost(self) -> int:
        """What the transfer takes out of the funding account."""
        return self.amount + self.fee

    def to_payment(self) -> Payment:
        return Payment(
            account=self.source,
            destination=self.destination,
            amount=str(self.amount),
            fee=str(self.fee),
        )

    def __str__(self):
        return f"{self.source} -> {self.destination} {self.amount} drops (+{self.fee} fee)"


@dataclass
class SignedTransfer:
    transfer: Transfer
    tx_hash: str
    tx_blob: str
    sequence: int
    tx_json: dict = field(default_factory=dict)
    last_ledger_seq: int | None = None


@dataclass
class FundingResult:
    """Outcome of one funding run."""

    required: int
    ready: list[HasAddress] = field(default_factory=list)
    funded: list[HasAddress] = field(default_factory=list)
    transfers: list[SignedTransfer] = field(default_factory=list)

    @property
    def eligible(self) -> list[HasAddress]:
        """Accounts able to take part in the load test: already funded plus topped up."""
        return [*self.ready, *self.funded]

    def summary(self) -> dict:
        return {
            "required": self.required,
            "ready": [a.address for a in self.ready],
            "funded": [a.address for a in self.funded],
            "transfers": [
                {
                    "destination": s.transfer.destination,
                    "amount": s.transfer.amount,
                    "fee": s.transfer.fee,
                    "sequence": s.sequence,
                    "tx_hash": s.tx_hash,
                    "state": str(s.transfer.state),
                }
                for s in self.transfers
            ],
        }
