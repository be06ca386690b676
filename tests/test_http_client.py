"""
Tests for the ledger gateway HTTP client.

Validates:
- Request shapes for each capability
- Response validation (transaction hashes, numeric fields)
- Translation of transport and HTTP failures into LedgerError
- Signing material never shows its secret
"""

from __future__ import annotations

import asyncio
import json
from datetime import date

import httpx
import pytest

from legis_ledger.errors import LedgerError
from legis_ledger.ledger.client import SigningMaterial
from legis_ledger.ledger.http_client import HttpLedgerClient

TX = "0x" + "cd" * 32
ADDRESS = "0x" + "ab" * 20


class TestHttpLedgerClient:
    def setup_method(self):
        self.requests: list[httpx.Request] = []
        self.responses: dict[tuple[str, str], httpx.Response] = {}

    def _client(self, api_key: str = "") -> HttpLedgerClient:
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.responses[(request.method, request.url.path)]

        return HttpLedgerClient(
            "https://gateway.test/", api_key=api_key, transport=httpx.MockTransport(handler)
        )

    def _call(self, client: HttpLedgerClient, coro):
        async def scenario():
            try:
                return await coro
            finally:
                await client.close()

        return asyncio.run(scenario())

    def test_register_session(self):
        self.responses[("POST", "/v1/sessions")] = httpx.Response(
            200, json={"session_id": 4, "tx_hash": TX}
        )
        client = self._client(api_key="k-123")
        receipt = self._call(client, client.register_session(date(2025, 3, 1), "Plenary"))

        assert receipt.ledger_session_id == 4
        assert receipt.tx_ref == TX
        body = json.loads(self.requests[0].content)
        assert body == {"date": "2025-03-01", "description": "Plenary"}
        assert self.requests[0].headers["Authorization"] == "Bearer k-123"

    def test_register_law(self):
        self.responses[("POST", "/v1/sessions/4/laws")] = httpx.Response(
            201, json={"law_id": 2, "tx_hash": TX}
        )
        client = self._client()
        receipt = self._call(client, client.register_law(4, "Budget", "Annual budget"))
        assert receipt.ledger_law_id == 2
        assert "Authorization" not in self.requests[0].headers

    def test_cast_vote_payload(self):
        self.responses[("POST", "/v1/sessions/4/laws/2/votes")] = httpx.Response(
            200, json={"tx_hash": TX}
        )
        client = self._client()
        signing = SigningMaterial(ADDRESS, "s3cret")
        receipt = self._call(client, client.cast_vote(4, 2, 3, signing))

        assert receipt.tx_ref == TX
        body = json.loads(self.requests[0].content)
        assert body == {"vote": 3, "signer": ADDRESS, "credential": "s3cret"}

    def test_fetch_tally(self):
        self.responses[("GET", "/v1/sessions/4/laws/2/results")] = httpx.Response(
            200, json={"favor": 3, "against": 1, "abstain": 0, "absent": 2}
        )
        client = self._client()
        tally = self._call(client, client.fetch_tally(4, 2))
        assert tally.as_dict() == {"favor": 3, "against": 1, "abstain": 0, "absent": 2}

    def test_fetch_tally_rejects_bad_counts(self):
        for bad in (-1, "3", True, None):
            self.responses[("GET", "/v1/sessions/4/laws/2/results")] = httpx.Response(
                200, json={"favor": bad, "against": 1, "abstain": 0, "absent": 0}
            )
            client = self._client()
            with pytest.raises(LedgerError):
                self._call(client, client.fetch_tally(4, 2))

    def test_malformed_tx_hash(self):
        self.responses[("POST", "/v1/sessions/4/finalize")] = httpx.Response(
            200, json={"tx_hash": "0x1234"}
        )
        client = self._client()
        with pytest.raises(LedgerError, match="Malformed"):
            self._call(client, client.finalize_session(4))

    def test_http_error_status(self):
        self.responses[("POST", "/v1/voters")] = httpx.Response(500, json={"error": "reverted"})
        client = self._client()
        with pytest.raises(LedgerError, match="500"):
            self._call(client, client.register_voter(ADDRESS))

    def test_non_object_body(self):
        self.responses[("DELETE", f"/v1/voters/{ADDRESS}")] = httpx.Response(200, json=[TX])
        client = self._client()
        with pytest.raises(LedgerError):
            self._call(client, client.unregister_voter(ADDRESS))

    def test_invalid_json(self):
        self.responses[("GET", f"/v1/voters/{ADDRESS}")] = httpx.Response(200, content=b"<html>")
        client = self._client()
        with pytest.raises(LedgerError, match="invalid JSON"):
            self._call(client, client.is_voter_registered(ADDRESS))

    def test_is_voter_registered(self):
        self.responses[("GET", f"/v1/voters/{ADDRESS}")] = httpx.Response(
            200, json={"registered": True}
        )
        client = self._client()
        assert self._call(client, client.is_voter_registered(ADDRESS)) is True

    def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = HttpLedgerClient("https://gateway.test", transport=httpx.MockTransport(handler))
        with pytest.raises(LedgerError, match="unreachable") as excinfo:
            self._call(client, client.fetch_tally(1, 1))
        assert isinstance(excinfo.value.cause, httpx.ConnectError)

    def test_connection_status(self):
        self.responses[("GET", "/v1/status")] = httpx.Response(
            200, json={"block_number": 1200, "network_id": 31337}
        )
        client = self._client()
        status = self._call(client, client.connection_status())
        assert status.connected
        assert status.block_number == 1200
        assert status.network_id == 31337

    def test_connection_status_never_raises(self):
        self.responses[("GET", "/v1/status")] = httpx.Response(503)
        client = self._client()
        status = self._call(client, client.connection_status())
        assert not status.connected
        assert "503" in status.error


class TestSigningMaterial:
    def test_secret_is_redacted(self):
        signing = SigningMaterial(ADDRESS, "s3cret")
        assert "s3cret" not in repr(signing)
        assert "s3cret" not in str(signing)
        assert signing.reveal() == "s3cret"
