"""
Nominatim forward geocoding for user incident reports.

Docs: https://nominatim.org/release-docs/latest/api/Search/

Only used when a user submits a report with a free-text location. A failed
lookup never blocks the report; the incident is simply stored without geometry.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from community_connect.core.settings import settings

logger = logging.getLogger(__name__)


def _result_to_point(result: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        lng = float(result["lon"])
        lat = float(result["lat"])
    except (KeyError, TypeError, ValueError):
        return None
    return {"type": "Point", "coordinates": [lng, lat]}


class NominatimGeocoder:
    """Thin wrapper around Nominatim /search (JSON, limit 1, AU only)."""

    def __init__(
        self,
        *,
        url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url or settings.nominatim_url
        self.timeout_s = timeout_s if timeout_s is not None else settings.nominatim_timeout_s
        self.user_agent = user_agent or settings.nominatim_user_agent
        self.transport = transport

    @staticmethod
    def build_query(location: str) -> str:
        return f"{location.strip()}, Queensland, Australia"

    async def geocode(self, query: str) -> Optional[Dict[str, Any]]:
        """
        Forward geocode a free-text query -> GeoJSON Point, or None.

        Network errors, non-2xx responses and empty result sets are logged
        and return None.
        """
        query = (query or "").strip()
        if not query:
            return None

        params = {"q": query, "format": "json", "limit": "1", "countrycodes": "au"}
        headers = {"User-Agent": self.user_agent}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s,
                follow_redirects=True,
                transport=self.transport or httpx.AsyncHTTPTransport(retries=1),
            ) as client:
                resp = await client.get(self.url, params=params, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("[geocode] http error status=%d query=%r", exc.response.status_code, query)
            return None
        except httpx.HTTPError as exc:
            logger.warning("[geocode] request failed query=%r: %s", query, exc)
            return None
        except ValueError:
            logger.warning("[geocode] invalid json query=%r", query)
            return None

        if not isinstance(data, list) or not data:
            logger.info("[geocode] no results query=%r", query)
            return None

        point = _result_to_point(data[0]) if isinstance(data[0], dict) else None
        logger.info("[geocode] query=%r -> %s", query, point["coordinates"] if point else None)
        return point
