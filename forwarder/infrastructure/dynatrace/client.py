from __future__ import annotations

"""forwarder/infrastructure/dynatrace/client.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Client Dynatrace Problems API v2 (lecture seule).

- GET {base_url}/e/{tenant}/api/v2/problems, header `Api-Token`
- pagination via `nextPageKey` : sur les pages suivantes, seul ce paramètre est envoyé
- retourne les problèmes bruts (dicts) : le moteur les transmet tels quels
- toute erreur (réseau, non-2xx, JSON invalide) → UpstreamError
"""

import logging
from typing import Any, Mapping, Optional

import httpx

from forwarder.core.config import DynatraceConfig, settings
from forwarder.core.errors import ConfigError, UpstreamError

logger = logging.getLogger(__name__)

__all__ = ["DynatraceClient", "http_get"]


def http_get(url: str, *, headers: Mapping[str, str], params: Mapping[str, Any], timeout: float):
    """Wrapper HTTP patchable par les tests."""
    with httpx.Client(timeout=timeout) as client:
        return client.get(url, headers=dict(headers), params=dict(params))


class DynatraceClient:
    def __init__(self, cfg: DynatraceConfig, *, api_token: Optional[str] = None):
        token = api_token or settings.DYNATRACE_API_TOKEN
        if not token:
            raise ConfigError("DYNATRACE_API_TOKEN environment variable is required")
        self.cfg = cfg
        self._token = token
        self.problems_url = cfg.problems_url()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Api-Token {self._token}",
            "Accept": "application/json",
        }

    def _params(self, next_page_key: Optional[str]) -> dict[str, Any]:
        if next_page_key:
            return {"nextPageKey": next_page_key}
        params: dict[str, Any] = {}
        if self.cfg.problem_selector:
            params["problemSelector"] = self.cfg.problem_selector
            params["sort"] = "-startTime"
        if self.cfg.page_size:
            params["pageSize"] = self.cfg.page_size
        return params

    def fetch_page(self, next_page_key: Optional[str] = None) -> dict[str, Any]:
        logger.debug("Fetching problems from %s (page key: %s)", self.problems_url, next_page_key)
        try:
            resp = http_get(
                self.problems_url,
                headers=self._headers(),
                params=self._params(next_page_key),
                timeout=self.cfg.timeout_seconds,
            )
        except Exception as exc:  # noqa: BLE001
            raise UpstreamError(f"Dynatrace API unreachable: {exc}") from exc

        status = getattr(resp, "status_code", None)
        if status is None or not (200 <= status < 300):
            body = (getattr(resp, "text", "") or "")[:500]
            logger.warning("Dynatrace API returned error (%s): %s", status, body)
            raise UpstreamError(f"Dynatrace API error ({status}): {body}", status_code=status)

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError(f"Dynatrace API returned invalid JSON: {exc}", status_code=status) from exc
        if not isinstance(data, dict) or not isinstance(data.get("problems", []), list):
            raise UpstreamError("Dynatrace API returned an unexpected payload", status_code=status)
        return data

    def fetch_problems(self) -> list[dict[str, Any]]:
        """Toutes les pages, dans l'ordre renvoyé par l'API."""
        problems: list[dict[str, Any]] = []
        page_key: Optional[str] = None
        total: Any = None

        for _ in range(self.cfg.max_pages):
            data = self.fetch_page(page_key)
            problems.extend(data.get("problems") or [])
            total = data.get("totalCount", total)
            page_key = data.get("nextPageKey")
            if not page_key:
                break
        else:
            logger.warning("Dynatrace pagination stopped after %d page(s)", self.cfg.max_pages)

        logger.info("Fetched %d problems from Dynatrace (total count: %s)", len(problems), total)
        return problems

    def test_connection(self) -> int:
        """Retourne `totalCount` (première page seulement)."""
        data = self.fetch_page()
        total = int(data.get("totalCount") or len(data.get("problems") or []))
        logger.info("Successfully connected to Dynatrace API. Found %d problems.", total)
        return total
