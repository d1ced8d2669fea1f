"""
stock_api_client.py

Copy this file into a producer service (POS sync, invoice import, bots).

What it provides:
- A tiny API client for the stock ledger backend (JWT login + authenticated requests)
- Helpers for the producer side of the ledger:
  - Purchases / sales as movements (POST /stock/movements, /stock/movements/batch)
  - Waste (POST /stock/waste, quantities are booked negative by the backend)
  - Stock counts: start, add entries, complete, approve

Environment variables expected:
- STOCK_API_URL: e.g. "https://your-domain.com/api"
- STOCK_API_EMAIL: producer user's email (must exist and belong to an account)
- STOCK_API_PASSWORD: producer user's password

Optional:
- STOCK_API_TOKEN: if you want to pre-seed a token (otherwise we login)

Dependencies:
- requests (pip install requests)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import requests


class ApiError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _error_body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


@dataclass
class StockApiClient:
    base_url: str
    email: str
    password: str
    token: Optional[str] = None
    timeout: float = 60

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def login(self) -> str:
        """
        FastAPI-Users JWT login endpoint.
        The backend uses: POST /auth/jwt/login with form fields: username, password
        """
        url = f"{self.base_url.rstrip('/')}/auth/jwt/login"
        resp = requests.post(
            url,
            data={"username": self.email, "password": self.password},
            headers={"Accept": "application/json"},
            timeout=30,
        )
        if resp.status_code >= 400:
            raise ApiError(f"Login failed ({resp.status_code})", resp.status_code, _error_body(resp))
        data = resp.json()
        token = data.get("access_token")
        if not token:
            raise ApiError(f"Login response missing access_token: {data}")
        self.token = token
        return token

    def _request(self, method: str, path: str, *, json: Any = None, params: Dict[str, Any] | None = None) -> Any:
        if not self.token:
            self.login()

        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        resp = requests.request(method, url, json=json, params=params, headers=self._headers(), timeout=self.timeout)

        # Token expired: retry once with a fresh login
        if resp.status_code == 401:
            self.login()
            resp = requests.request(method, url, json=json, params=params, headers=self._headers(), timeout=self.timeout)

        if resp.status_code >= 400:
            raise ApiError(f"{method} {path} failed ({resp.status_code})", resp.status_code, _error_body(resp))

        if resp.status_code == 204:
            return None
        return resp.json()

    # ----------------------------
    # Ledger producers
    # ----------------------------

    def record_movement(
        self,
        *,
        item_id: str,
        store_id: str,
        type: str,  # "PURCHASE" | "SALE" | "WASTE" | "ADJUSTMENT"
        quantity: float,
        cost_price: Optional[float] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        normalize_sign: bool = True,
    ) -> Any:
        """
        Calls: POST /stock/movements

        With normalize_sign the backend makes PURCHASE positive and SALE/WASTE
        negative, so callers can send magnitudes.
        """
        payload = {
            "item_id": item_id,
            "store_id": store_id,
            "type": type,
            "quantity": quantity,
            "cost_price": cost_price,
            "reason": reason,
            "notes": notes,
            "reference_id": reference_id,
            "reference_type": reference_type,
            "normalize_sign": normalize_sign,
        }
        return self._request("POST", "/stock/movements", json=payload)

    def record_movements(self, movements: Iterable[Dict[str, Any]]) -> Any:
        """
        Calls: POST /stock/movements/batch
        All lines are recorded or none (invoice import, POS order sync).
        """
        lines: List[Dict[str, Any]] = []
        for m in movements:
            line = dict(m)
            line.setdefault("normalize_sign", True)
            lines.append(line)
        return self._request("POST", "/stock/movements/batch", json={"movements": lines})

    def record_sales(self, *, store_id: str, order_id: str, lines: Iterable[Dict[str, Any]]) -> Any:
        """POS order -> one SALE movement per line, referencing the order."""
        return self.record_movements(
            {
                "item_id": line["item_id"],
                "store_id": store_id,
                "type": "SALE",
                "quantity": line["quantity"],
                "reference_id": order_id,
                "reference_type": "pos_order",
            }
            for line in lines
        )

    def record_waste(self, *, store_id: str, items: Iterable[Dict[str, Any]]) -> Any:
        """
        Calls: POST /stock/waste
        items: [{"item_id", "quantity", "reason"?, "reason_id"?, "notes"?}]
        """
        return self._request("POST", "/stock/waste", json={"store_id": store_id, "items": list(items)})

    # ----------------------------
    # Counts
    # ----------------------------

    def start_count(self, *, store_id: str, name: Optional[str] = None) -> Any:
        return self._request("POST", "/counts", json={"store_id": store_id, "name": name})

    def add_count_entry(
        self,
        count_id: str,
        *,
        item_id: str,
        quantity: float,
        unit_cost: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> Any:
        payload = {"item_id": item_id, "quantity": quantity, "unit_cost": unit_cost, "notes": notes}
        return self._request("POST", f"/counts/{count_id}/entries", json=payload)

    def complete_count(self, count_id: str, *, notes: Optional[str] = None) -> Any:
        return self._request("POST", f"/counts/{count_id}/complete", json={"notes": notes})

    def approve_count(
        self,
        count_id: str,
        *,
        adjustment_notes: Optional[str] = None,
        expected_as_of: Optional[str] = None,  # "approval" | "count_started"
    ) -> Any:
        payload = {"adjustment_notes": adjustment_notes, "expected_as_of": expected_as_of}
        return self._request("POST", f"/counts/{count_id}/approve", json=payload)

    def get_alerts(self, *, store_id: Optional[str] = None) -> Any:
        params = {"store_id": store_id} if store_id else None
        return self._request("GET", "/stock/alerts", params=params)


def make_client_from_env() -> StockApiClient:
    base_url = os.getenv("STOCK_API_URL", "").strip()
    email = os.getenv("STOCK_API_EMAIL", "").strip()
    password = os.getenv("STOCK_API_PASSWORD", "").strip()
    token = os.getenv("STOCK_API_TOKEN", "").strip() or None

    if not base_url:
        raise RuntimeError("Missing STOCK_API_URL")
    if not email:
        raise RuntimeError("Missing STOCK_API_EMAIL")
    if not password:
        raise RuntimeError("Missing STOCK_API_PASSWORD")

    return StockApiClient(base_url=base_url, email=email, password=password, token=token)


if __name__ == "__main__":
    client = make_client_from_env()

    # Example: record a sale of 2 units (the backend books it negative)
    # client.record_movement(
    #     item_id="00000000-0000-0000-0000-000000000000",
    #     store_id="00000000-0000-0000-0000-000000000000",
    #     type="SALE",
    #     quantity=2,
    # )

    print("OK: client configured. Uncomment examples to run.")
