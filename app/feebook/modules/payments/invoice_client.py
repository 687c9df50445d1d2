from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any


class InvoiceSuiteError(RuntimeError):
    pass


@dataclass(frozen=True)
class InvoiceSuiteClient:
    """Receipt PDF renderer. Fields p1..p14 fill the receipt template slots."""

    endpoint: str
    api_key: str
    timeout_seconds: int = 30

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.api_key)

    def generate_pdf(self, fields: dict[str, Any]) -> str:
        """Render a receipt and return its URL."""
        if not self.configured:
            raise InvoiceSuiteError("Invoice service is not configured.")
        req = urllib.request.Request(
            self.endpoint.rstrip("/") + "/pdf",
            data=json.dumps(fields).encode("utf-8"),
            method="POST",
        )
        req.add_header("Authorization", f"Bearer {self.api_key}")
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raise InvoiceSuiteError(f"HTTP {e.code} from invoice service") from e
        except (urllib.error.URLError, OSError) as e:
            raise InvoiceSuiteError(f"Invoice service unreachable: {getattr(e, 'reason', e)}") from e
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise InvoiceSuiteError("Invalid JSON from invoice service") from e
        if not data.get("success") or not data.get("url"):
            raise InvoiceSuiteError(f"Failed to generate invoice: {data.get('error')}")
        return str(data["url"])


def invoice_client_from_config(config: dict) -> InvoiceSuiteClient:
    return InvoiceSuiteClient(
        endpoint=config.get("INVOICE_SUITE_ENDPOINT") or "",
        api_key=config.get("INVOICE_SUITE_API_KEY") or "",
    )
