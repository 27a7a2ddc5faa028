"""Remote Settings client for Nimbus recipes.

Recipes live at ``{server}/v1/buckets/main/collections/{collection}/records``;
a recipe's record id is its slug.
"""
from __future__ import annotations

import logging
from typing import Any

import requests

from nimbus_cli.domain.errors import ConfigurationError, PayloadError, TransportError
from nimbus_cli.domain.models import ServerAddress, SlugAddress

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "release"
DEFAULT_COLLECTION = "default"


class RemoteSettingsClient:
    """Thin ``requests`` wrapper mapping server/collection tags to URLs."""

    def __init__(
        self,
        *,
        servers: dict[str, str],
        collections: dict[str, str],
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.servers = servers
        self.collections = collections
        self.timeout = timeout
        self.session = session or requests.Session()

    def records_url(self, address: ServerAddress) -> str:
        server = address.server or DEFAULT_SERVER
        collection = address.collection or DEFAULT_COLLECTION
        try:
            base = self.servers[server].rstrip("/")
            name = self.collections[collection]
        except KeyError as exc:
            raise ConfigurationError(
                f"No URL configured for '{exc.args[0]}'", identifier=str(address)
            ) from exc
        return f"{base}/v1/buckets/main/collections/{name}/records"

    def _get(self, url: str, operation: str) -> requests.Response:
        logger.debug("GET %s", url)
        try:
            return self.session.get(url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise TransportError(operation, f"timed out after {self.timeout}s ({url})") from exc
        except requests.RequestException as exc:
            raise TransportError(operation, f"{exc} ({url})") from exc

    def list_recipes(self, address: ServerAddress) -> list[dict[str, Any]]:
        url = self.records_url(address)
        resp = self._get(url, "fetch-recipes")
        if not resp.ok:
            raise TransportError("fetch-recipes", f"HTTP {resp.status_code} from {url}")
        data = self._json(resp, url).get("data", [])
        logger.info("Fetched %d recipes from %s", len(data), str(address) or DEFAULT_SERVER)
        return list(data)

    def get_recipe(self, address: SlugAddress) -> dict[str, Any]:
        url = f"{self.records_url(address.server_address)}/{address.slug}"
        resp = self._get(url, "fetch-recipes")
        if resp.status_code == 404:
            raise PayloadError(f"No recipe '{address}' on the server", identifier=str(address))
        if not resp.ok:
            raise TransportError("fetch-recipes", f"HTTP {resp.status_code} from {url}")
        return self._json(resp, url)["data"]

    @staticmethod
    def _json(resp: requests.Response, url: str) -> dict[str, Any]:
        try:
            body = resp.json()
        except requests.RequestException as exc:
            raise TransportError("fetch-recipes", f"invalid JSON from {url}") from exc
        if not isinstance(body, dict) or "data" not in body:
            raise TransportError("fetch-recipes", f"unexpected response shape from {url}")
        return body


__all__ = ["RemoteSettingsClient"]
