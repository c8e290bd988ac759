import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel, PositiveInt
from xrpl.asyncio.clients import AsyncJsonRpcClient

from distributor.config import load_config
from distributor.costs import calculate_runtime_costs
from distributor.distributor import Distributor
from distributor.errors import AccountLookupError, InsufficientFundsError, TransferError
from distributor.logging_config import setup_logging
from distributor.models import Participant
from distributor.xrpl_adapters import build_distributor

setup_logging()
log = logging.getLogger("distributor.app")

TIMEOUT = 3.0


async def _probe_rippled(url: str, max_retries: int = 30, retry_delay: float = 2.0) -> None:
    """Probe rippled RPC endpoint with retries until it responds."""
    payload = {"method": "server_info", "params": [{}]}

    for attempt in range(1, max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=TIMEOUT) as http:
                r = await http.post(url, json=payload)
                r.raise_for_status()
                log.info(f"RPC endpoint responding (attempt {attempt}/{max_retries})")
                return
        except httpx.HTTPError as e:
            if attempt < max_retries:
                log.info(f"RPC not ready yet (attempt {attempt}/{max_retries}): {e.__class__.__name__} - retrying in {retry_delay}s...")
                await asyncio.sleep(retry_delay)
            else:
                log.error(f"RPC failed after {max_retries} attempts")
                raise


class DistributeReq(BaseModel):
    transactions: PositiveInt
    accounts: list[str]


class TransferResp(BaseModel):
    destination: str
    amount: int
    fee: int
    sequence: int
    tx_hash: str
    state: str


class DistributeResp(BaseModel):
    required: int
    ready: list[str]
    funded: list[str]
    transfers: list[TransferResp]


def create_app(distributor: Distributor | None = None, config: dict | None = None) -> FastAPI:
    """Build the service. Passing a distributor skips connecting to rippled."""
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.distributor is None:
            rpc = config["rpc_url"]
            async with asyncio.timeout(config["timeout"]["startup"]):
                log.info("Probing RPC endpoint %s...", rpc)
                await _probe_rippled(rpc)
            app.state.distributor = build_distributor(config, AsyncJsonRpcClient(rpc))
        log.info("Distributor ready, funding account %s", config["funding_account"]["address"])
        yield
        log.info("Shutdown complete")

    app = FastAPI(title="XRPL Workload Distributor", lifespan=lifespan)
    app.state.distributor = distributor
    app.state.funding_account = Participant(config["funding_account"]["address"])

    r_state = APIRouter(prefix="/state", tags=["State"])

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/distribute", response_model=DistributeResp, tags=["Funding"])
    async def distribute(req: DistributeReq, request: Request):
        d: Distributor = request.app.state.distributor
        funding = request.app.state.funding_account
        accounts = [funding, *(Participant(a) for a in req.accounts if a != funding.address)]
        try:
            result = await d.fund_accounts(accounts, calculate_runtime_costs(req.transactions, d.fee, d.base_tx_cost))
        except InsufficientFundsError as e:
            raise HTTPException(status_code=409, detail={"phase": e.phase, "message": str(e), "balance": e.balance})
        except AccountLookupError as e:
            raise HTTPException(status_code=502, detail={"phase": e.phase, "message": str(e), "address": e.address})
        except TransferError as e:
            raise HTTPException(
                status_code=502,
                detail={
                    "phase": e.phase,
                    "message": str(e),
                    "destination": e.transfer.destination,
                    "amount": e.transfer.amount,
                    "funded": [a.address for a in e.funded],
                },
            )
        return result.summary()

    @r_state.get("/last-run", response_model=DistributeResp)
    def last_run(request: Request):
        result = request.app.state.distributor.last_result
        if result is None:
            raise HTTPException(status_code=404, detail="No funding run yet")
        return result.summary()

    app.include_router(r_state)
    return app


app = create_app()
