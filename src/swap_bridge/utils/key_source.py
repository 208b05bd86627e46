import json
import logging
import os
import typing
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class KeySource(Protocol):
    """Gives the bridge the signing key for a chain."""

    async def fetch_key(self, chain: str) -> str:
        ...


class LocalKeySource:
    """Static keys, taken from a mapping or from <CHAIN>_PRIVATE_KEY variables."""

    def __init__(self, keys: dict[str, str] | None = None):
        self.keys = dict(keys or {})

    @staticmethod
    def env_var(chain: str) -> str:
        return f"{chain.upper()}_PRIVATE_KEY"

    async def fetch_key(self, chain: str) -> str:
        key = self.keys.get(chain) or os.environ.get(self.env_var(chain))
        if not key:
            raise ValueError(
                f"{self.env_var(chain)} environment variable is required in local mode. "
                f"This is used to sign fill transactions on {chain}"
            )
        return key


class RoflKeySource:
    """Keys generated by the ROFL application daemon, one per chain."""

    ROFL_SOCKET_PATH = "/run/rofl-appd.sock"

    def __init__(self, url: str = ''):
        self.url = url

    async def _appd_post(self, path: str, payload: typing.Any) -> typing.Any:
        transport = None
        if self.url and not self.url.startswith('http'):
            transport = httpx.AsyncHTTPTransport(uds=self.url)
            logger.debug(f"Using HTTP socket: {self.url}")
        elif not self.url:
            transport = httpx.AsyncHTTPTransport(uds=self.ROFL_SOCKET_PATH)
            logger.debug(f"Using unix domain socket: {self.ROFL_SOCKET_PATH}")

        async with httpx.AsyncClient(transport=transport) as client:
            url = self.url if self.url and self.url.startswith('http') else "http://localhost"
            logger.debug(f"Posting to {url+path}: {json.dumps(payload)}")
            response = await client.post(url + path, json=payload, timeout=30.0)
            response.raise_for_status()
            return response.json()

    @staticmethod
    def key_id(chain: str) -> str:
        return f"{chain}-bridge-signer"

    async def fetch_key(self, chain: str) -> str:
        payload = {
            "key_id": self.key_id(chain),
            "kind": "secp256k1"
        }

        path = '/rofl/v1/keys/generate'

        response = await self._appd_post(path, payload)
        return response["key"]
