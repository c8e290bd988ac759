"""In-memory ledger fakes shared by the distributor tests."""

import pytest

import distributor.constants as C
from distributor.distributor import Distributor
from distributor.models import LedgerAccount, Participant, SignedTransfer

FUNDER = Participant("rFunder")
CREDENTIAL = "sFunderSeed"


class FakeLedger:
    """Account store over a dict of balances. Committed transfers move funds."""

    def __init__(self, balances: dict[str, int], sequences: dict[str, int] | None = None):
        sequences = sequences or {}
        self.accounts = {
            addr: LedgerAccount(address=addr, balance=bal, sequence=sequences.get(addr, 1))
            for addr, bal in balances.items()
        }
        self.lookups: list[str] = []
        self.fail: set[str] = set()

    async def get_account(self, address: str) -> LedgerAccount:
        self.lookups.append(address)
        if address in self.fail or address not in self.accounts:
            raise RuntimeError(f"account {address} not found")
        return self.accounts[address]

    def apply(self, signed: SignedTransfer) -> None:
        t = signed.transfer
        src = self.accounts[t.source]
        self.accounts[t.source] = LedgerAccount(src.address, src.balance - t.cost, src.sequence + 1)
        dst = self.accounts.get(t.destination) or LedgerAccount(t.destination, 0, 1)
        self.accounts[t.destination] = LedgerAccount(dst.address, dst.balance + t.amount, dst.sequence)


class FakeSigner:
    def __init__(self, fail_on: str | None = None):
        self.fail_on = fail_on
        self.calls: list[tuple[str, int, str]] = []

    def sign(self, transfer, signer, sequence, credential):
        self.calls.append((transfer.destination, sequence, credential))
        if transfer.destination == self.fail_on:
            raise ValueError("bad key")
        return SignedTransfer(transfer=transfer, tx_hash=f"HASH{sequence}", tx_blob="00", sequence=sequence)


class FakeBroadcaster:
    def __init__(self, ledger: FakeLedger | None = None, fail_on: str | None = None):
        self.ledger = ledger
        self.fail_on = fail_on
        self.submitted: list[SignedTransfer] = []

    async def submit(self, signed):
        if signed.transfer.destination == self.fail_on:
            raise RuntimeError("tecUNFUNDED_PAYMENT")
        self.submitted.append(signed)
        if self.ledger is not None:
            self.ledger.apply(signed)


@pytest.fixture
def make_distributor():
    """Build a Distributor wired to fakes; returns (distributor, ledger, signer, broadcaster)."""

    def _make(balances, *, sequences=None, fee=1, base_tx_cost=9, parallel_scan=False,
              sign_fail=None, submit_fail=None, **kwargs):
        ledger = FakeLedger(balances, sequences)
        signer = FakeSigner(fail_on=sign_fail)
        broadcaster = FakeBroadcaster(ledger, fail_on=submit_fail)
        d = Distributor(
            ledger,
            signer,
            broadcaster,
            credential=CREDENTIAL,
            fee=fee,
            base_tx_cost=base_tx_cost,
            parallel_scan=parallel_scan,
            **kwargs,
        )
        return d, ledger, signer, broadcaster

    return _make


@pytest.fixture
def participants():
    return [Participant(f"rUser{i}") for i in range(4)]


@pytest.fixture
def config(tmp_path, monkeypatch):
    """Config loaded from a minimal file, no environment overrides."""
    monkeypatch.delenv("RPC_URL", raising=False)
    monkeypatch.delenv("RIPPLED_IP", raising=False)
    monkeypatch.delenv("DISTRIBUTOR_CONFIG", raising=False)
    path = tmp_path / "config.toml"
    path.write_text(
        "[funding_account]\n"
        f'address = "{C.GENESIS["address"]}"\n'
        f'seed = "{C.GENESIS["seed"]}"\n'
        "[costs]\n"
        "fee_drops = 1\n"
        "base_tx_cost_drops = 9\n"
    )
    from distributor.config import load_config

    return load_config(path)
