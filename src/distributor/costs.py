import distributor.constants as C


def calculate_runtime_costs(
    transactions: int,
    fee: int = C.DEFAULT_FEE_DROPS,
    base_tx_cost: int = C.INITIAL_TX_COST_DROPS,
) -> int:
    """Balance in drops a participant needs to run its whole share of the load test.

    Each load-test transaction costs the fixed network fee plus the base
    transaction cost. There is no fee estimation, so both are constants for a
    deployment.
    """
    if transactions < 0:
        raise ValueError(f"transaction count can't be negative: {transactions}")
    return transactions * (fee + base_tx_cost)
