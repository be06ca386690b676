"""
Ledger gateway client — LedgerClient over the gateway's JSON API.

The gateway fronts the voting contract: it signs administrative transactions
with the operator key, signs vote transactions with the credential supplied
per call, estimates gas, and waits for inclusion. This client only speaks
HTTP to it and checks that every answer has the expected shape.

Endpoints:
    POST   /v1/sessions                                  → {session_id, tx_hash}
    POST   /v1/sessions/{sid}/laws                       → {law_id, tx_hash}
    POST   /v1/sessions/{sid}/finalize                   → {tx_hash}
    POST   /v1/sessions/{sid}/laws/{lid}/votes           → {tx_hash}
    GET    /v1/sessions/{sid}/laws/{lid}/results         → {favor, against, abstain, absent}
    GET    /v1/voters/{address}                          → {registered}
    POST   /v1/voters                                    → {tx_hash}
    DELETE /v1/voters/{address}                          → {tx_hash}
    GET    /v1/status                                    → {block_number, network_id}
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

import httpx

from legis_ledger.domain.schema import validate_tx_ref
from legis_ledger.errors import LedgerError, ValidationError
from legis_ledger.ledger.client import (
    ConnectionStatus,
    LawReceipt,
    LedgerClient,
    LedgerReceipt,
    LedgerTally,
    SessionReceipt,
    SigningMaterial,
)

logger = logging.getLogger(__name__)


class HttpLedgerClient(LedgerClient):
    """
    Async ledger gateway client.

    Uses httpx for async HTTP. Transport errors, non-2xx answers and malformed
    payloads all surface as LedgerError.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Sessions & laws ────────────────────────────────────────

    async def register_session(self, scheduled_date: date, description: str) -> SessionReceipt:
        data = await self._request(
            "POST",
            "/v1/sessions",
            json={"date": scheduled_date.isoformat(), "description": description},
        )
        receipt = SessionReceipt(
            ledger_session_id=_int_field(data, "session_id"),
            tx_ref=_tx_field(data),
        )
        logger.info(
            "Ledger session registered: id=%d tx=%s",
            receipt.ledger_session_id, receipt.tx_ref[:18],
        )
        return receipt

    async def register_law(
        self, ledger_session_id: int, title: str, description: str
    ) -> LawReceipt:
        data = await self._request(
            "POST",
            f"/v1/sessions/{ledger_session_id}/laws",
            json={"title": title, "description": description},
        )
        return LawReceipt(ledger_law_id=_int_field(data, "law_id"), tx_ref=_tx_field(data))

    async def finalize_session(self, ledger_session_id: int) -> LedgerReceipt:
        data = await self._request("POST", f"/v1/sessions/{ledger_session_id}/finalize")
        return LedgerReceipt(tx_ref=_tx_field(data))

    # ── Votes ──────────────────────────────────────────────────

    async def cast_vote(
        self,
        ledger_session_id: int,
        ledger_law_id: int,
        encoded_vote: int,
        signing_material: SigningMaterial,
    ) -> LedgerReceipt:
        data = await self._request(
            "POST",
            f"/v1/sessions/{ledger_session_id}/laws/{ledger_law_id}/votes",
            json={
                "vote": encoded_vote,
                "signer": signing_material.voter_address,
                "credential": signing_material.reveal(),
            },
        )
        return LedgerReceipt(tx_ref=_tx_field(data))

    async def fetch_tally(self, ledger_session_id: int, ledger_law_id: int) -> LedgerTally:
        data = await self._request(
            "GET", f"/v1/sessions/{ledger_session_id}/laws/{ledger_law_id}/results"
        )
        return LedgerTally(
            favor=_int_field(data, "favor"),
            against=_int_field(data, "against"),
            abstain=_int_field(data, "abstain"),
            absent=_int_field(data, "absent"),
        )

    # ── Voters ─────────────────────────────────────────────────

    async def is_voter_registered(self, address: str) -> bool:
        data = await self._request("GET", f"/v1/voters/{address}")
        registered = data.get("registered")
        if not isinstance(registered, bool):
            raise LedgerError(f"Malformed ledger response: 'registered' is {registered!r}")
        return registered

    async def register_voter(self, address: str) -> LedgerReceipt:
        data = await self._request("POST", "/v1/voters", json={"address": address})
        return LedgerReceipt(tx_ref=_tx_field(data))

    async def unregister_voter(self, address: str) -> LedgerReceipt:
        data = await self._request("DELETE", f"/v1/voters/{address}")
        return LedgerReceipt(tx_ref=_tx_field(data))

    # ── Health ─────────────────────────────────────────────────

    async def connection_status(self) -> ConnectionStatus:
        try:
            data = await self._request("GET", "/v1/status")
            return ConnectionStatus(
                connected=True,
                block_number=_int_field(data, "block_number"),
                network_id=_int_field(data, "network_id"),
            )
        except LedgerError as exc:
            return ConnectionStatus(connected=False, error=exc.message)

    # ── Internal ───────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        client = await self._ensure_client()
        try:
            resp = await client.request(method, path, json=json)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise LedgerError(
                f"Ledger gateway answered {exc.response.status_code} for {method} {path}",
                cause=exc,
            ) from exc
        except httpx.HTTPError as exc:
            raise LedgerError(f"Ledger gateway unreachable: {exc}", cause=exc) from exc
        except ValueError as exc:
            raise LedgerError(f"Ledger gateway returned invalid JSON for {path}", cause=exc) from exc

        if not isinstance(data, dict):
            raise LedgerError(f"Malformed ledger response for {path}: expected an object")
        return data


def _int_field(data: dict[str, Any], name: str) -> int:
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise LedgerError(f"Malformed ledger response: {name!r} is {value!r}")
    return value


def _tx_field(data: dict[str, Any]) -> str:
    try:
        return validate_tx_ref(data.get("tx_hash"))
    except ValidationError as exc:
        raise LedgerError(f"Malformed ledger response: {exc.message}", cause=exc) from exc
