import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import distributor.constants as C
from distributor.costs import calculate_runtime_costs
from distributor.errors import (
    AccountLookupError,
    BroadcastError,
    InsufficientFundsError,
    SigningError,
)
from distributor.models import FundingResult, HasAddress, LedgerAccount, ShortAccount, SignedTransfer, Transfer

log = logging.getLogger("distributor.core")


class AccountStore(Protocol):
    async def get_account(self, address: str) -> LedgerAccount: ...


class Signer(Protocol):
    def sign(self, transfer: Transfer, signer: LedgerAccount, sequence: int, credential: str) -> SignedTransfer: ...


class Broadcaster(Protocol):
    async def submit(self, signed: SignedTransfer) -> None: ...


@dataclass
class NonceTracker:
    """Local mirror of the funding account's sequence number.

    Seeded once from the ledger and only moved forward after a transfer has been
    signed. Nothing else may send from the funding account while a run owns it.
    """

    address: str
    next_seq: int
    issued: int = 0

    def current(self) -> int:
        return self.next_seq

    def advance(self) -> int:
        self.next_seq += 1
        self.issued += 1
        return self.next_seq


def unique_participants(accounts: Sequence[HasAddress]) -> list[HasAddress]:
    """accounts[1:] with one entry per address, first occurrence wins, funding account excluded."""
    if not accounts:
        return []
    seen: dict[str, HasAddress] = {accounts[0].address: accounts[0]}
    for a in accounts[1:]:
        seen.setdefault(a.address, a)
    return list(seen.values())[1:]


SortKey = Callable[[ShortAccount], Any]


def by_shortfall(short: ShortAccount) -> int:
    return short.missing


def allocate(
    short: Sequence[ShortAccount],
    balance: int,
    fee: int,
    *,
    key: SortKey = by_shortfall,
) -> list[ShortAccount]:
    """Pick the accounts the funding balance can fully top up.

    Accounts are ordered by ``key`` (smallest shortfall first by default, which
    funds as many accounts as possible) and taken while the remaining balance
    covers shortfall + fee. The walk stops at the first account that doesn't fit.

    Raises:
        InsufficientFundsError: there are short accounts but none can be funded.
    """
    ordered = sorted(short, key=key)
    remaining = balance
    selected: list[ShortAccount] = []

    for s in ordered:
        cost = s.missing + fee
        if remaining < cost:
            break
        selected.append(s)
        remaining -= cost

    if ordered and not selected:
        cheapest = min(s.missing for s in ordered) + fee
        log.error("Funding account holds %s drops, cheapest top-up needs %s", balance, cheapest)
        raise InsufficientFundsError(balance, cheapest)

    log.debug(
        "Allocated %s/%s short accounts, %s of %s drops left", len(selected), len(ordered), remaining, balance
    )
    return selected


class Distributor:
    """Tops up load-test participants from a single funding account.

    The funding account is always the first entry of the account list and is
    never itself evaluated for funding.
    """

    def __init__(
        self,
        store: AccountStore,
        signer: Signer,
        broadcaster: Broadcaster,
        *,
        credential: str,
        fee: int = C.DEFAULT_FEE_DROPS,
        base_tx_cost: int = C.INITIAL_TX_COST_DROPS,
        parallel_scan: bool = False,
        scan_concurrency: int = C.SCAN_CONCURRENCY,
        key: SortKey = by_shortfall,
    ):
        self.store = store
        self.signer = signer
        self.broadcaster = broadcaster
        self.credential = credential
        self.fee = fee
        self.base_tx_cost = base_tx_cost
        self.parallel_scan = parallel_scan
        self.scan_concurrency = scan_concurrency
        self.key = key
        self.last_result: FundingResult | None = None
        # One run at a time owns the funding account's sequence
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, cfg: dict, store: AccountStore, signer: Signer, broadcaster: Broadcaster) -> "Distributor":
        return cls(
            store,
            signer,
            broadcaster,
            credential=cfg["funding_account"]["seed"],
            fee=cfg["costs"]["fee_drops"],
            base_tx_cost=cfg["costs"]["base_tx_cost_drops"],
            parallel_scan=cfg["distributor"]["parallel_scan"],
            scan_concurrency=cfg["distributor"]["scan_concurrency"],
        )

    async def distribute(self, accounts: Sequence[HasAddress], transactions: int) -> list[HasAddress]:
        """Fund accounts[1:] from accounts[0] for ``transactions`` load-test transactions each.

        Returns the accounts that can take part in the run.
        """
        required = calculate_runtime_costs(transactions, self.fee, self.base_tx_cost)
        log.info("Each account needs %s drops for %s transactions", required, transactions)
        result = await self.fund_accounts(accounts, required)
        return result.eligible

    async def fund_accounts(self, accounts: Sequence[HasAddress], required: int) -> FundingResult:
        async with self._lock:
            ready, short = await self.scan(accounts, required)
            result = FundingResult(required=required, ready=ready)

            if not short:
                log.info("All %s accounts already funded", len(ready))
                self.last_result = result
                return result

            funder = await self._lookup(accounts[0].address, C.FundingPhase.ALLOCATE)
            selected = allocate(short, funder.balance, self.fee, key=self.key)
            if len(selected) < len(short):
                log.warning("Funding account can only cover %s of %s short accounts", len(selected), len(short))

            await self.execute(funder, selected, result)
            log.info("Funded %s accounts, %s eligible for the run", len(result.funded), len(result.eligible))
            self.last_result = result
            return result

    async def scan(self, accounts: Sequence[HasAddress], required: int) -> tuple[list[HasAddress], list[ShortAccount]]:
        """Split participants into those holding ``required`` drops and those short of it.

        Each address is evaluated once, at its first position; repeats and any
        later mention of the funding account are dropped.
        """
        participants = unique_participants(accounts)
        if self.parallel_scan:
            states = await self._lookup_all(participants)
        else:
            states = [await self._lookup(a.address) for a in participants]

        ready: list[HasAddress] = []
        short: list[ShortAccount] = []
        for account, state in zip(participants, states):
            if state.balance < required:
                short.append(ShortAccount(account=account, missing=required - state.balance))
                continue
            ready.append(account)

        log.info("Scan: %s ready, %s need funding", len(ready), len(short))
        return ready, short

    async def execute(self, funder: LedgerAccount, selected: Sequence[ShortAccount], result: FundingResult) -> FundingResult:
        """Sign and submit one transfer per selected account, each committed before the next."""
        nonce = NonceTracker(address=funder.address, next_seq=funder.sequence)

        for s in selected:
            transfer = Transfer(source=funder.address, destination=s.address, amount=s.missing, fee=self.fee)

            try:
                signed = self.signer.sign(transfer, funder, nonce.current(), self.credential)
            except Exception as e:
                log.error("Signing failed seq=%s %s: %s", nonce.current(), transfer, e)
                raise SigningError(transfer, result.funded, str(e)) from e
            transfer.state = C.TransferState.SIGNED
            nonce.advance()

            try:
                await self.broadcaster.submit(signed)
            except Exception as e:
                if transfer.state == C.TransferState.SIGNED:
                    transfer.state = C.TransferState.REJECTED
                log.error("Broadcast failed seq=%s %s: %s", signed.sequence, transfer, e)
                raise BroadcastError(transfer, result.funded, str(e)) from e

            transfer.state = C.TransferState.VALIDATED
            result.funded.append(s.account)
            result.transfers.append(signed)
            log.debug("Funded %s with %s drops (seq=%s, hash=%s)", s.address, s.missing, signed.sequence, signed.tx_hash)

        return result

    async def _lookup(self, address: str, phase: C.FundingPhase = C.FundingPhase.SCAN) -> LedgerAccount:
        try:
            account = await self.store.get_account(address)
        except Exception as e:
            log.error("Lookup of %s failed during %s: %s", address, phase, e)
            raise AccountLookupError(address, phase, str(e)) from e
        log.debug("%s balance=%s seq=%s", address, account.balance, account.sequence)
        return account

    async def _lookup_all(self, participants: list[HasAddress]) -> list[LedgerAccount]:
        sem = asyncio.Semaphore(self.scan_concurrency)

        async def bounded(address: str) -> LedgerAccount:
            async with sem:
                return await self._lookup(address)

        try:
            async with asyncio.TaskGroup() as tg:
                tasks = [tg.create_task(bounded(a.address)) for a in participants]
        except ExceptionGroup as eg:
            raise eg.exceptions[0]
        return [t.result() for t in tasks]
