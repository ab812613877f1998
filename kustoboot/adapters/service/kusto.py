"""
Kusto service adapter — HTTP calls against the emulator's REST endpoint.

Only what the deployment needs: a health probe and a management command
runner used to seed the sample dataset. Uses ``urllib`` directly; the
emulator needs no auth on localhost.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request

from kustoboot.adapters.base import Adapter
from kustoboot.core.models.action import ErrorKind, Receipt

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "NetDefaultDB"


class KustoServiceAdapter(Adapter):
    """REST client for the deployed Kusto emulator."""

    def __init__(self, base_url: str, timeout: float = 15):
        super().__init__()
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "kusto"

    @property
    def base_url(self) -> str:
        return self._base_url

    def is_available(self) -> bool:
        return self.health().ok

    def health(self) -> Receipt:
        """The management endpoint answers a trivial command."""
        return self.management(".show cluster", operation="health")

    def management(
        self,
        csl: str,
        database: str = DEFAULT_DATABASE,
        *,
        operation: str = "mgmt",
    ) -> Receipt:
        """POST a control command to ``/v1/rest/mgmt``."""
        return self._post("/v1/rest/mgmt", {"db": database, "csl": csl}, operation)

    def query(self, csl: str, database: str = DEFAULT_DATABASE) -> Receipt:
        """POST a query to ``/v1/rest/query``."""
        return self._post("/v1/rest/query", {"db": database, "csl": csl}, "query")

    def _post(self, path: str, body: dict, operation: str) -> Receipt:
        url = f"{self._base_url}{path}"
        req = urllib.request.Request(
            url,
            data=json.dumps(body).encode("utf-8"),
            headers={
                "Content-Type": "application/json; charset=utf-8",
                "Accept": "application/json",
                "User-Agent": "kustoboot/1.0",
            },
            method="POST",
        )
        start = time.monotonic()
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                payload = resp.read().decode("utf-8", errors="replace")
                status = resp.status
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")[:500]
            return Receipt.failure(
                adapter=self.name,
                operation=operation,
                error=f"HTTP {e.code} from {url}: {detail or e.reason}",
                error_kind=ErrorKind.VERIFICATION,
                return_code=e.code,
            )
        except (urllib.error.URLError, OSError) as e:
            return Receipt.failure(
                adapter=self.name,
                operation=operation,
                error=f"Cannot reach {url}: {e}",
                error_kind=ErrorKind.VERIFICATION,
            )

        return Receipt.success(
            adapter=self.name,
            operation=operation,
            output=payload,
            return_code=status,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
