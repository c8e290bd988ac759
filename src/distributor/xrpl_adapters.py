"""xrpl-py backed account lookup, signing and submission for the distributor."""

import asyncio
import hashlib
import logging

from xrpl.asyncio.clients import AsyncJsonRpcClient
from xrpl.asyncio.clients.exceptions import XRPLRequestFailureException
from xrpl.asyncio.transaction import XRPLReliableSubmissionException
from xrpl.constants import CryptoAlgorithm
from xrpl.core.binarycodec import encode, encode_for_signing
from xrpl.core.keypairs import sign
from xrpl.models import SubmitOnly
from xrpl.models.requests import AccountInfo, Ledger, Tx
from xrpl.wallet import Wallet

import distributor.constants as C
from distributor.distributor import Distributor
from distributor.models import LedgerAccount, SignedTransfer, Transfer

log = logging.getLogger("distributor.xrpl")


def _sha512half(b: bytes) -> bytes:
    return hashlib.sha512(b).digest()[:32]


def _txid_from_signed_blob_hex(signed_blob_hex: str) -> str:
    # XRPL txid = SHA512Half(0x54584E00 || signed_bytes)
    return _sha512half(bytes.fromhex("54584E00") + bytes.fromhex(signed_blob_hex)).hex().upper()


class ValidatedLedger:
    """Highest validated ledger index seen in any response, shared by the adapters."""

    def __init__(self, index: int | None = None):
        self.index = index

    def observe(self, index) -> None:
        if index is None:
            return
        index = int(index)
        if self.index is None or index > self.index:
            self.index = index


class XrplAccountStore:
    """Reads balance and sequence from the last validated ledger.

    With ``missing_as_empty`` an account that doesn't exist yet is reported with
    a zero balance instead of failing, so brand new wallets can be funded.
    """

    def __init__(
        self,
        client: AsyncJsonRpcClient,
        *,
        ledger: ValidatedLedger | None = None,
        missing_as_empty: bool = False,
        timeout: float = C.RPC_TIMEOUT,
    ):
        self.client = client
        self.ledger = ValidatedLedger() if ledger is None else ledger
        self.missing_as_empty = missing_as_empty
        self.timeout = timeout

    async def get_account(self, address: str) -> LedgerAccount:
        req = AccountInfo(account=address, ledger_index="validated", strict=True)
        resp = await asyncio.wait_for(self.client.request(req), timeout=self.timeout)
        if resp.is_successful():
            self.ledger.observe(resp.result.get("ledger_index"))
            return LedgerAccount.from_account_info(resp.result)
        if self.missing_as_empty and resp.result.get("error") == "actNotFound":
            log.debug("%s not found, treating as empty", address)
            return LedgerAccount(address=address, balance=0, sequence=0)
        raise XRPLRequestFailureException(resp.result)


class XrplSigner:
    """Signs funding Payments locally. The credential is the funding account's seed.

    Every Payment gets ``LastLedgerSequence = latest validated ledger + horizon``
    so that a transfer which is not validated in time can never commit later.
    """

    def __init__(
        self,
        ledger: ValidatedLedger,
        *,
        algorithm: CryptoAlgorithm = CryptoAlgorithm.SECP256K1,
        horizon: int = C.HORIZON,
    ):
        self.ledger = ledger
        self.algorithm = algorithm
        self.horizon = horizon
        self._wallets: dict[str, Wallet] = {}

    def _wallet(self, seed: str) -> Wallet:
        w = self._wallets.get(seed)
        if w is None:
            w = Wallet.from_seed(seed, algorithm=self.algorithm)
            self._wallets[seed] = w
        return w

    def sign(self, transfer: Transfer, signer: LedgerAccount, sequence: int, credential: str) -> SignedTransfer:
        wallet = self._wallet(credential)
        if wallet.address != signer.address:
            raise ValueError(f"credential belongs to {wallet.address}, not {signer.address}")
        if self.ledger.index is None:
            raise ValueError("no validated ledger seen yet, cannot set LastLedgerSequence")
        lls = self.ledger.index + self.horizon

        tx = transfer.to_payment().to_xrpl()
        if tx.get("Flags") == 0:
            del tx["Flags"]
        tx["Sequence"] = sequence
        tx["SigningPubKey"] = wallet.public_key
        tx["LastLedgerSequence"] = lls

        signing_blob = encode_for_signing(tx)
        to_sign = signing_blob if isinstance(signing_blob, str) else signing_blob.hex()
        tx["TxnSignature"] = sign(to_sign, wallet.private_key)
        signed_blob_hex = encode(tx)

        return SignedTransfer(
            transfer=transfer,
            tx_hash=_txid_from_signed_blob_hex(signed_blob_hex),
            tx_blob=signed_blob_hex,
            sequence=sequence,
            tx_json=tx,
            last_ledger_seq=lls,
        )


class XrplBroadcaster:
    """Submits a signed blob and waits until it is validated or can no longer be.

    A transfer is EXPIRED only once a validated ledger past its
    ``LastLedgerSequence`` does not contain it.
    """

    def __init__(
        self,
        client: AsyncJsonRpcClient,
        *,
        ledger: ValidatedLedger | None = None,
        submit_timeout: float = C.SUBMIT_TIMEOUT,
        rpc_timeout: float = C.RPC_TIMEOUT,
        poll_interval: float = C.POLL_INTERVAL,
    ):
        self.client = client
        self.ledger = ValidatedLedger() if ledger is None else ledger
        self.submit_timeout = submit_timeout
        self.rpc_timeout = rpc_timeout
        self.poll_interval = poll_interval

    async def submit(self, signed: SignedTransfer) -> None:
        if signed.last_ledger_seq is None:
            raise ValueError(f"{signed.tx_hash} has no LastLedgerSequence, its expiry can't be decided")

        resp = await asyncio.wait_for(self.client.request(SubmitOnly(tx_blob=signed.tx_blob)), timeout=self.submit_timeout)
        if not resp.is_successful():
            raise XRPLRequestFailureException(resp.result)

        er = resp.result.get("engine_result")
        log.debug("submit seq=%s hash=%s engine_result=%s", signed.sequence, signed.tx_hash, er)
        # tem/tef are final, tel never left the node
        if isinstance(er, str) and er.startswith(("tem", "tef", "tel")):
            signed.transfer.state = C.TransferState.REJECTED
            raise XRPLReliableSubmissionException(f"{signed.tx_hash} rejected: {er}")

        meta_result = await self._wait_for_validation(signed)
        if meta_result != "tesSUCCESS":
            signed.transfer.state = C.TransferState.REJECTED
            raise XRPLReliableSubmissionException(f"{signed.tx_hash} failed in ledger: {meta_result}")

    async def _latest_validated_ledger(self) -> int:
        r = await asyncio.wait_for(self.client.request(Ledger(ledger_index="validated")), timeout=self.rpc_timeout)
        if not r.is_successful():
            raise XRPLRequestFailureException(r.result)
        li = int(r.result["ledger_index"])
        self.ledger.observe(li)
        return li

    async def _wait_for_validation(self, signed: SignedTransfer) -> str:
        lls = signed.last_ledger_seq
        while True:
            try:
                # Read the validated ledger before the tx so a miss is final once it is past lls
                latest = await self._latest_validated_ledger()
                r = await asyncio.wait_for(
                    self.client.request(Tx(transaction=signed.tx_hash)), timeout=self.rpc_timeout
                )
            except TimeoutError:
                log.debug("ledger/tx lookup for %s timed out, retrying", signed.tx_hash)
            else:
                if r.result.get("validated"):
                    self.ledger.observe(r.result.get("ledger_index"))
                    return r.result["meta"]["TransactionResult"]
                if latest > lls:
                    signed.transfer.state = C.TransferState.EXPIRED
                    raise XRPLReliableSubmissionException(
                        f"{signed.tx_hash} not in any ledger up to {lls} (validated ledger is {latest})"
                    )
            await asyncio.sleep(self.poll_interval)


def build_distributor(cfg: dict, client: AsyncJsonRpcClient) -> Distributor:
    to = cfg["timeout"]
    d = cfg["distributor"]
    ledger = ValidatedLedger()
    store = XrplAccountStore(client, ledger=ledger, missing_as_empty=d["missing_as_empty"], timeout=to["rpc"])
    signer = XrplSigner(ledger, horizon=d["horizon"])
    broadcaster = XrplBroadcaster(client, ledger=ledger, rpc_timeout=to["rpc"], poll_interval=to["poll_interval"])
    return Distributor.from_config(cfg, store, signer, broadcaster)
