"""Thin aiohttp wrapper shared by the provider clients."""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from .errors import InvalidProviderResponse, ProviderRequestError


@dataclass
class Artifact:
    """Raw bytes fetched from a backend."""
    data: bytes
    content_type: str = ""
    url: Optional[str] = None


class ApiClient:
    """Issues authenticated JSON requests and unauthenticated downloads.

    A fresh ClientSession is opened per call. Any non-2xx answer becomes a
    ProviderRequestError carrying the status and body.
    """

    def __init__(self, headers: Optional[Dict[str, str]] = None, timeout: float = 120.0):
        self.headers = dict(headers or {})
        self.timeout = timeout

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout)

    async def post_json(self, url: str, payload: Dict[str, Any],
                        headers: Optional[Dict[str, str]] = None) -> Any:
        """POST a JSON body and decode the JSON answer."""
        merged = {**self.headers, "Content-Type": "application/json", **(headers or {})}
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            async with session.post(url, headers=merged, json=payload) as response:
                await self._raise_for_status(response, url)
                return await self._read_json(response, url)

    async def get_json(self, url: str) -> Any:
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            async with session.get(url, headers=self.headers) as response:
                await self._raise_for_status(response, url)
                return await self._read_json(response, url)

    async def post_for_bytes(self, url: str, payload: Dict[str, Any]) -> Artifact:
        """POST a JSON body to an endpoint that answers with raw bytes."""
        merged = {**self.headers, "Content-Type": "application/json"}
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            async with session.post(url, headers=merged, json=payload) as response:
                await self._raise_for_status(response, url)
                data = await response.read()
                return Artifact(
                    data=data,
                    content_type=response.headers.get("Content-Type", ""),
                    url=url,
                )

    async def post_form(self, url: str, form: aiohttp.FormData) -> Any:
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            async with session.post(url, headers=self.headers, data=form) as response:
                await self._raise_for_status(response, url)
                return await self._read_json(response, url)

    async def download(self, url: str) -> Artifact:
        """GET an output file; delivery URLs are pre-signed so no auth is sent."""
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            async with session.get(url) as response:
                await self._raise_for_status(response, url)
                data = await response.read()
                return Artifact(
                    data=data,
                    content_type=response.headers.get("Content-Type", ""),
                    url=url,
                )

    @staticmethod
    async def _raise_for_status(response: aiohttp.ClientResponse, url: str) -> None:
        if 200 <= response.status < 300:
            return
        try:
            body = await response.text()
        except (aiohttp.ClientError, UnicodeDecodeError):
            body = "<unreadable body>"
        raise ProviderRequestError(response.status, body, url=url)

    @staticmethod
    async def _read_json(response: aiohttp.ClientResponse, url: str) -> Any:
        text = await response.text()
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidProviderResponse(f"Malformed JSON from {url}: {e}") from e
