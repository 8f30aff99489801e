from __future__ import annotations

import logging
from typing import Any

import httpx

from .schemas import HealthfinderItem, HealthListItem, HealthTopic

logger = logging.getLogger(__name__)

HEALTH_GOV_API_BASE = "https://health.gov/myhealthfinder/api/v3"


def _resources(payload: Any, *path: str) -> list[dict[str, Any]]:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return []
        node = node.get(key)
    if isinstance(node, dict):
        node = [node]
    return [row for row in node or [] if isinstance(row, dict)]


class HealthGovClient:
    """MyHealthfinder lookups. Any transport or shape problem yields an empty list."""

    def __init__(self, *, timeout: float = 10.0, disable_external: bool = False, base_url: str = HEALTH_GOV_API_BASE) -> None:
        self.timeout = timeout
        self.disable_external = disable_external
        self.base_url = base_url.rstrip("/")

    def _get(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        if self.disable_external:
            return {}
        try:
            response = httpx.get(
                f"{self.base_url}/{endpoint}",
                params={key: value for key, value in params.items() if value not in (None, "")},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json() if response.content else {}
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("health.gov %s lookup failed: %s", endpoint, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def search_topics(self, keyword: str, *, limit: int = 3) -> list[HealthTopic]:
        payload = self._get("topicsearch.json", {"keyword": keyword})
        topics = [
            HealthTopic(
                id=str(row.get("Id") or ""),
                title=str(row.get("Title") or ""),
                accessible_version=row.get("AccessibleVersion") or None,
                categories=row.get("Categories") or None,
            )
            for row in _resources(payload, "Result", "Resources", "Resource")
            if row.get("Id") and row.get("Title")
        ]
        return topics[:limit]

    def myhealthfinder(self, *, age: int | None = None, sex: str | None = None, limit: int = 3) -> list[HealthfinderItem]:
        if age is None and not sex:
            return []
        payload = self._get("myhealthfinder.json", {"age": age, "sex": sex})
        items = [
            HealthfinderItem(
                id=str(row.get("Id") or ""),
                title=str(row.get("Title") or ""),
                accessible_version=row.get("AccessibleVersion") or None,
            )
            for row in _resources(payload, "Result", "Resources", "Resource")
            if row.get("Id") and row.get("Title")
        ]
        return items[:limit]

    def item_list(self, *, category: str | None = None, language: str | None = None, limit: int = 5) -> list[HealthListItem]:
        payload = self._get("itemlist.json", {"Type": "topic", "category": category, "lang": language})
        items = [
            HealthListItem(id=str(row.get("Id") or ""), title=str(row.get("Title") or ""))
            for row in _resources(payload, "Result", "Items", "Item")
            if row.get("Id") and row.get("Title")
        ]
        return items[:limit]
