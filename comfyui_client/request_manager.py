"""
Aiohttp request layer for the ComfyUI HTTP API.
Every call is a single HTTP exchange carrying the client id and, when
configured, basic-auth credentials.
"""

import asyncio
import json
import logging
import ssl
from enum import Enum
from typing import Any

import aiohttp
import certifi
from pydantic import BaseModel, TypeAdapter, ValidationError
from yarl import URL

from .config import ClientOptions
from .errors import NetworkError, ResponseError

Record = type[BaseModel] | TypeAdapter


class ResponseMode(Enum):
    json = "json"
    binary = "binary"
    empty = "empty"


class ComfyRequestManager:
    """
    Issues requests against ``<scheme>://<server_address>/<endpoint>?clientId=<id>``.
    Non-200 responses and JSON bodies with an ``error`` field are logged and
    reported as no result (None/False); transport failures raise NetworkError.
    """

    def __init__(
        self,
        server_address: str,
        client_id: str,
        options: ClientOptions,
        logger: logging.Logger,
    ):
        scheme, ws_scheme = ("https", "wss") if options.secure else ("http", "ws")
        self._base = URL(f"{scheme}://{server_address}")
        self._ws_base = URL(f"{ws_scheme}://{server_address}")
        self._client_id = client_id
        self._options = options
        self._logger = logger
        self._session: aiohttp.ClientSession | None = None

    @property
    def session(self) -> aiohttp.ClientSession | None:
        return self._session

    async def ensure_session(self) -> aiohttp.ClientSession:
        """Lazy session creation with proper SSL context."""
        if self._session is None or self._session.closed:
            # Create SSL context using certifi's CA bundle
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            timeout = aiohttp.ClientTimeout(total=self._options.timeout)
            self._session = aiohttp.ClientSession(connector=connector, timeout=timeout)
        return self._session

    def url(self, endpoint: str = "", params: dict[str, str] | None = None) -> URL:
        """Build the URL of ``endpoint``, keeping any query of the server address."""
        return self._join(self._base, endpoint, params)

    def ws_url(self) -> URL:
        return self._join(self._ws_base, "ws")

    def _join(self, base: URL, endpoint: str, params: dict[str, str] | None = None) -> URL:
        url = base / endpoint if endpoint else base
        # Appending a path drops the query of the server address
        url = url.with_query(base.query)
        return url.update_query({**(params or {}), "clientId": self._client_id})

    def headers(self, content_type: str | None = None) -> dict[str, str]:
        """Build request headers with optional basic auth."""
        headers = {}
        if content_type:
            headers["Content-Type"] = content_type
        authorization = self._options.authorization
        if authorization:
            headers["Authorization"] = authorization
        return headers

    async def get_json(
        self, endpoint: str, record: Record, params: dict[str, str] | None = None
    ) -> Any | None:
        """
        GET a JSON endpoint and decode it into ``record``.

        Returns:
            The decoded record, or None if the server reported a failure
        """
        data = await self.request(endpoint, params=params)
        return self.decode(record, data, endpoint)

    async def post_json(
        self, endpoint: str, data: Any, record: Record
    ) -> Any | None:
        """POST a JSON body and decode the JSON answer into ``record``."""
        result = await self.request(endpoint, data=data)
        return self.decode(record, result, endpoint)

    async def post_form(
        self, endpoint: str, form: aiohttp.FormData, record: Record
    ) -> Any | None:
        """POST a multipart form as-is and decode the JSON answer into ``record``."""
        result = await self.request(endpoint, data=form)
        return self.decode(record, result, endpoint)

    async def post(self, endpoint: str, data: Any = None) -> bool:
        """POST to an endpoint that answers without a body. True on HTTP 200."""
        result = await self.request(
            endpoint, data=data, method="POST", mode=ResponseMode.empty
        )
        return bool(result)

    async def get_bytes(
        self, endpoint: str, params: dict[str, str] | None = None
    ) -> bytes | None:
        """GET a binary resource, None if the server reported a failure."""
        return await self.request(endpoint, params=params, mode=ResponseMode.binary)

    async def request(
        self,
        endpoint: str,
        data: Any = None,
        method: str = "GET",
        params: dict[str, str] | None = None,
        mode: ResponseMode = ResponseMode.json,
    ) -> Any:
        """
        Run one HTTP exchange.

        Args:
            endpoint: Path relative to the server address
            data: Request body; FormData is sent as multipart, anything else as JSON text
            method: Used when there is no body; a body always means POST
            params: Extra query parameters
            mode: How to read a successful response

        Returns:
            Parsed JSON, raw bytes or True depending on ``mode``; None on failure
        """
        session = await self.ensure_session()
        url = self.url(endpoint, params)
        method = "POST" if data is not None or method == "POST" else "GET"

        if isinstance(data, aiohttp.FormData):
            body = data
            headers = self.headers()
        elif data is not None:
            body = json.dumps(data)
            headers = self.headers("application/json")
        else:
            body = None
            headers = self.headers()
        headers["Accept"] = "application/json"

        self._logger.debug("%s %s", method, url)
        try:
            async with session.request(method, url, data=body, headers=headers) as response:
                return await self._handle_response(response, url, mode)
        except aiohttp.ClientError as e:
            raise NetworkError(0, str(e), str(url))
        except asyncio.TimeoutError:
            raise NetworkError(
                0, "Connection timed out, the server took too long to respond", str(url)
            )

    async def _handle_response(
        self, response: aiohttp.ClientResponse, url: URL, mode: ResponseMode
    ) -> Any:
        if response.status != 200:
            text = await response.text(errors="replace")
            self._logger.error(
                "%s %s failed with status %s: %s",
                response.method, url, response.status, text[:200],
            )
            return None

        if mode is ResponseMode.binary:
            return await response.read()
        if mode is ResponseMode.empty:
            return True

        try:
            result = await response.json(content_type=None)
        except ValueError as e:
            raise ResponseError(f"Malformed JSON from {url}: {e}", str(url)) from e
        if result is None:
            self._logger.error("Empty response from %s", url)
            return None
        if isinstance(result, dict) and "error" in result:
            self._logger.error("Server error from %s: %s", url, result["error"])
            return None
        return result

    @staticmethod
    def decode(record: Record, data: Any, endpoint: str) -> Any | None:
        """Validate a parsed JSON body against its record type."""
        if data is None:
            return None
        try:
            if isinstance(record, TypeAdapter):
                return record.validate_python(data)
            return record.model_validate(data)
        except ValidationError as e:
            raise ResponseError(f"Unexpected response from {endpoint}: {e}", endpoint) from e

    async def close(self):
        """Close the session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
