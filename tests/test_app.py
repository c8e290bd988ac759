"""Tests for the funding HTTP service, wired to in-memory fakes."""

import pytest
from fastapi.testclient import TestClient

from distributor.app import create_app


@pytest.fixture
def service(config, make_distributor):
    funder = config["funding_account"]["address"]

    def _service(balances):
        d, ledger, signer, _ = make_distributor({funder: 0, **balances})
        return TestClient(create_app(distributor=d, config=config)), ledger, signer

    return _service


class TestService:
    def test_health(self, service):
        client, *_ = service({})
        with client:
            assert client.get("/health").json() == {"status": "ok"}

    def test_no_run_yet(self, service):
        client, *_ = service({})
        with client:
            assert client.get("/state/last-run").status_code == 404

    def test_distribute(self, service, config):
        funder = config["funding_account"]["address"]
        client, ledger, signer = service({funder: 1000, "rShort": 0, "rReady": 100})

        with client:
            # 10 transactions at fee 1 + base cost 9 -> 100 drops each
            r = client.post("/distribute", json={"transactions": 10, "accounts": ["rShort", "rReady", funder]})
            assert r.status_code == 200
            body = r.json()
            assert body["required"] == 100
            assert body["ready"] == ["rReady"]
            assert body["funded"] == ["rShort"]
            assert body["transfers"][0]["amount"] == 100
            assert body["transfers"][0]["state"] == "VALIDATED"

            assert client.get("/state/last-run").json() == body
        assert len(signer.calls) == 1

    def test_repeated_accounts_funded_once(self, service, config):
        funder = config["funding_account"]["address"]
        client, ledger, signer = service({funder: 1000, "rShort": 0})

        with client:
            r = client.post("/distribute", json={"transactions": 10, "accounts": ["rShort", "rShort"]})
        assert r.status_code == 200
        assert r.json()["funded"] == ["rShort"]
        assert len(signer.calls) == 1
        assert ledger.accounts["rShort"].balance == 100

    def test_response_is_this_runs_result(self, config, make_distributor):
        funder = config["funding_account"]["address"]
        d, *_ = make_distributor({funder: 1000, "rShort": 0})
        fund_accounts = d.fund_accounts

        async def then_forget(accounts, required):
            result = await fund_accounts(accounts, required)
            d.last_result = None
            return result

        d.fund_accounts = then_forget
        with TestClient(create_app(distributor=d, config=config)) as client:
            r = client.post("/distribute", json={"transactions": 10, "accounts": ["rShort"]})
        assert r.status_code == 200
        assert r.json()["funded"] == ["rShort"]

    def test_insufficient_funds(self, service, config):
        funder = config["funding_account"]["address"]
        client, _, signer = service({funder: 10, "rShort": 0})

        with client:
            r = client.post("/distribute", json={"transactions": 10, "accounts": ["rShort"]})
        assert r.status_code == 409
        assert r.json()["detail"]["phase"] == "allocate"
        assert signer.calls == []

    def test_lookup_failure(self, service, config):
        funder = config["funding_account"]["address"]
        client, *_ = service({funder: 1000})

        with client:
            r = client.post("/distribute", json={"transactions": 1, "accounts": ["rUnknown"]})
        assert r.status_code == 502
        assert r.json()["detail"]["address"] == "rUnknown"

    def test_transactions_must_be_positive(self, service):
        client, *_ = service({})
        with client:
            r = client.post("/distribute", json={"transactions": 0, "accounts": []})
        assert r.status_code == 422
