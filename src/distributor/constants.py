from typing import Final
from enum import StrEnum

genesis_account: Final = {
    "address": "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh",
    "seed": "snoPBrXtMeMyMHUVTgbuqAfg1SUTb",
}

GENESIS = genesis_account

# Fixed network fee paid by every funding Payment (no fee escalation support)
DEFAULT_FEE_DROPS: Final = 10
# Cost of one load-test transaction for a participant, on top of its fee
INITIAL_TX_COST_DROPS: Final = 1_000_000


class FundingPhase(StrEnum):
    SCAN     = "scan"
    ALLOCATE = "allocate"
    SIGN     = "sign"
    SUBMIT   = "submit"


class TransferState(StrEnum):
    CREATED   = "CREATED"
    SIGNED    = "SIGNED"
    VALIDATED = "VALIDATED"
    REJECTED  = "REJECTED"
    EXPIRED   = "EXPIRED"


RPC_TIMEOUT = 2.0
SUBMIT_TIMEOUT = 20
HORIZON = 15  # Funding Payments expire if not validated within 15 ledgers
SCAN_CONCURRENCY = 50
POLL_INTERVAL = 0.5

__all__ = [
    "DEFAULT_FEE_DROPS",
    "GENESIS",
    "HORIZON",
    "INITIAL_TX_COST_DROPS",
    "POLL_INTERVAL",
    "RPC_TIMEOUT",
    "SUBMIT_TIMEOUT",
    "SCAN_CONCURRENCY",

    ######
    "FundingPhase",
    "TransferState",
]
