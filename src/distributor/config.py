import os
import tomllib
from pathlib import Path

import distributor.constants as C

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"


def load_config(path: Path | str | None = None) -> dict:
    """Read the TOML config and fill in anything the file leaves out.

    The file is taken from ``path``, then ``$DISTRIBUTOR_CONFIG``, then the copy shipped
    with the package.
    """
    path = Path(path or os.getenv("DISTRIBUTOR_CONFIG") or config_file)
    cfg = tomllib.loads(path.read_text())

    fw = cfg.setdefault("funding_account", {})
    fw["address"] = fw.get("address", C.GENESIS["address"])
    fw["seed"] = fw.get("seed", C.GENESIS["seed"])

    costs = cfg.setdefault("costs", {})
    costs["fee_drops"] = int(costs.get("fee_drops", C.DEFAULT_FEE_DROPS))
    costs["base_tx_cost_drops"] = int(costs.get("base_tx_cost_drops", C.INITIAL_TX_COST_DROPS))

    d = cfg.setdefault("distributor", {})
    d.setdefault("parallel_scan", False)
    d.setdefault("missing_as_empty", False)
    d.setdefault("scan_concurrency", C.SCAN_CONCURRENCY)
    d.setdefault("horizon", C.HORIZON)

    to = cfg.setdefault("timeout", {})
    to.setdefault("rpc", C.RPC_TIMEOUT)
    to.setdefault("poll_interval", C.POLL_INTERVAL)
    to.setdefault("startup", 60)

    cfg["rpc_url"] = rpc_url(cfg)
    return cfg


def rpc_url(cfg: dict) -> str:
    if url := os.getenv("RPC_URL"):
        return url
    rippled = cfg.get("rippled", {})
    host = rippled.get("docker") if Path("/.dockerenv").is_file() else rippled.get("local")
    host = os.getenv("RIPPLED_IP", host or "127.0.0.1")
    return f"http://{host}:{rippled.get('rpc_port', 5005)}"
