"""Hetzner Cloud REST API client: servers, SSH keys and actions."""

import logging

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from hetzbox.errors import HttpError, RateLimitedError, ServerError, TransportError, error_for_status

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.hetzner.cloud/v1"
DEFAULT_MAX_RETRIES = 3
REQUEST_TIMEOUT = 60


def _is_transient(exc):
    """Errors worth retrying: 408, 429, 5xx and network failures."""
    if isinstance(exc, (ServerError, RateLimitedError, TransportError)):
        return True
    return isinstance(exc, HttpError) and exc.status == 408


def _decode_body(resp):
    if not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError:
        return resp.text


class HetznerAPI:
    """Thin async client for ``api.hetzner.cloud``.

    Every method returns the decoded JSON body on 2xx and raises an
    :class:`~hetzbox.errors.ApiError` subclass otherwise. Transient failures
    are retried up to ``max_retries`` times with exponential backoff before
    the error surfaces.
    """

    def __init__(
        self,
        token,
        base_url=DEFAULT_API_URL,
        max_retries=DEFAULT_MAX_RETRIES,
        retry_base_delay=1.0,
        transport=None,
        timeout=REQUEST_TIMEOUT,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config, transport=None):
        return cls(
            token=config.api_token,
            base_url=config.base_url,
            max_retries=config.max_retries,
            transport=transport,
        )

    # ── HTTP helpers ──────────────────────────────────────────────

    async def _send(self, method, path, json=None, params=None):
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                resp = await client.request(method, url, json=json, params=params or None, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(message=f"transport_error {type(e).__name__}: {e}") from e

        body = _decode_body(resp)
        if 200 <= resp.status_code < 300:
            return body
        raise error_for_status(resp.status_code, body)

    def _log_retry(self, retry_state):
        exc = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(f"Hetzner API transient failure ({exc}); retry {retry_state.attempt_number}/{self.max_retries} in {delay:.0f}s")

    async def _request(self, method, path, json=None, params=None):
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_base_delay),
            retry=retry_if_exception(_is_transient),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                body = await self._send(method, path, json=json, params=params)
        return body

    # ── Servers ───────────────────────────────────────────────────

    async def create_server(self, params):
        """POST /servers"""
        return await self._request("POST", "/servers", json=params)

    async def get_server(self, server_id):
        """GET /servers/{id}"""
        return await self._request("GET", f"/servers/{server_id}")

    async def delete_server(self, server_id):
        """DELETE /servers/{id}"""
        return await self._request("DELETE", f"/servers/{server_id}")

    async def list_servers(self, params=None):
        """GET /servers, e.g. ``{"label_selector": "k=v"}``."""
        return await self._request("GET", "/servers", params=params)

    # ── SSH keys ──────────────────────────────────────────────────

    async def create_ssh_key(self, params):
        """POST /ssh_keys"""
        return await self._request("POST", "/ssh_keys", json=params)

    async def get_ssh_key(self, key_id):
        """GET /ssh_keys/{id}"""
        return await self._request("GET", f"/ssh_keys/{key_id}")

    async def delete_ssh_key(self, key_id):
        """DELETE /ssh_keys/{id}"""
        return await self._request("DELETE", f"/ssh_keys/{key_id}")

    async def list_ssh_keys(self, params=None):
        """GET /ssh_keys, e.g. ``{"name": "jido-ssh-key"}``."""
        return await self._request("GET", "/ssh_keys", params=params)

    # ── Actions ───────────────────────────────────────────────────

    async def get_action(self, action_id):
        """GET /actions/{id}"""
        return await self._request("GET", f"/actions/{action_id}")
