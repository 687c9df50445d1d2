from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

PG_BASE_URLS = {
    "sandbox": "https://sandbox.cashfree.com/pg",
    "production": "https://api.cashfree.com/pg",
}


class CashfreeError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, payload: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}


class CashfreeRateLimited(CashfreeError):
    pass


@dataclass(frozen=True)
class _CashfreeHttp:
    base_url: str
    client_id: str
    client_secret: str
    timeout_seconds: int = 30

    def _headers(self) -> dict[str, str]:
        return {
            "x-client-id": self.client_id,
            "x-client-secret": self.client_secret,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def request_json(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        retries: int = 0,
    ) -> Any:
        if not self.client_id or not self.client_secret:
            raise CashfreeError("Cashfree credentials are not configured.")
        url = self.base_url.rstrip("/") + path
        if params:
            url += "?" + urllib.parse.urlencode({k: v for k, v in params.items() if v is not None})
        data = json.dumps(body).encode("utf-8") if body is not None else None

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=data, method=method)
                for k, v in self._headers().items():
                    req.add_header(k, v)
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                try:
                    return json.loads(raw.decode("utf-8")) if raw else {}
                except ValueError as e:
                    raise CashfreeError(f"Invalid JSON from Cashfree ({path})") from e
            except urllib.error.HTTPError as e:
                try:
                    payload = json.loads(e.read().decode("utf-8", errors="ignore") or "{}")
                except ValueError:
                    payload = {}
                message = payload.get("message") or f"HTTP {e.code} from Cashfree"
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 10))
                    last_err = CashfreeRateLimited(message, status_code=429, payload=payload)
                    continue
                raise CashfreeError(message, status_code=e.code, payload=payload) from e
            except (urllib.error.URLError, OSError) as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
        if isinstance(last_err, CashfreeError):
            raise last_err
        raise CashfreeError(f"Cashfree request failed after retries: {last_err}")


@dataclass(frozen=True)
class CashfreePGClient(_CashfreeHttp):
    """Payment gateway orders API."""

    api_version: str = "2023-08-01"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["x-api-version"] = self.api_version
        return headers

    def create_order(self, order: dict[str, Any]) -> dict[str, Any]:
        # No retries: a duplicate POST could open a second order.
        result = self.request_json("POST", "/orders", body=order)
        logger.info("Cashfree order created: order_id=%s cf_order_id=%s", result.get("order_id"), result.get("cf_order_id"))
        return result

    def fetch_order(self, order_id: str) -> dict[str, Any]:
        result = self.request_json("GET", f"/orders/{urllib.parse.quote(str(order_id))}", retries=2)
        return result if isinstance(result, dict) else {}

    def fetch_order_payments(self, order_id: str) -> list[dict[str, Any]]:
        result = self.request_json("GET", f"/orders/{urllib.parse.quote(str(order_id))}/payments", retries=2)
        return result if isinstance(result, list) else []


@dataclass(frozen=True)
class CashfreeVerificationClient(_CashfreeHttp):
    """Verification suite (bank account validation)."""

    def _headers(self) -> dict[str, str]:
        return {
            "X-Client-Id": self.client_id,
            "X-Client-Secret": self.client_secret,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def verify_bank_account(self, *, account_number: str, ifsc: str, name: str, phone: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"bank_account": account_number, "ifsc": ifsc, "name": name}
        if phone:
            body["phone"] = phone
        result = self.request_json("POST", "/bank-account/sync", body=body)
        return result if isinstance(result, dict) else {}


def pg_client_from_config(config: dict) -> CashfreePGClient:
    env = (config.get("CASHFREE_ENVIRONMENT") or "sandbox").strip().lower()
    return CashfreePGClient(
        base_url=PG_BASE_URLS["production" if env == "production" else "sandbox"],
        client_id=config.get("CASHFREE_APP_ID") or "",
        client_secret=config.get("CASHFREE_APP_SECRET") or "",
        api_version=config.get("CASHFREE_API_VERSION") or "2023-08-01",
    )


def verification_client_from_config(config: dict) -> CashfreeVerificationClient:
    return CashfreeVerificationClient(
        base_url=config.get("CASHFREE_VRS_BASE_URL") or "",
        client_id=config.get("CASHFREE_VRS_APP_ID") or "",
        client_secret=config.get("CASHFREE_VRS_APP_SECRET") or "",
    )
