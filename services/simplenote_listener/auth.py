"""Simperium token renewal through the Simplenote web app."""

import logging
import os
import re
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import quote

import httpx
from dotenv import set_key

logger = logging.getLogger(__name__)

APP_URL = "https://app.simplenote.com"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/145.0.0.0 Safari/537.36"
)


class TokenRenewalError(Exception):
    """Raised when a fresh Simperium token cannot be obtained."""


def parse_token_cookie(set_cookie_headers: Iterable[str]) -> Optional[str]:
    """
    Find the token value among Set-Cookie headers.

    Args:
        set_cookie_headers: Raw Set-Cookie header values

    Returns:
        The token, or None if no token cookie was set
    """
    for cookie in set_cookie_headers:
        match = re.match(r"^\s*token=([^;]*)", cookie, re.IGNORECASE)
        if match:
            return match.group(1)
    return None


class SimperiumTokenRenewer:
    """Renews the Simperium access token and writes it back to the .env file."""

    def __init__(
        self,
        env_file: str,
        email: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        app_url: str = APP_URL
    ):
        """
        Initialize the renewer.

        Args:
            env_file: Path of the .env file holding SIMPERIUM_TOKEN
            email: Simplenote account email, sent as a cookie when set
            http_client: Optional HTTP client; proxies come from HTTPS_PROXY
            app_url: Simplenote web app URL
        """
        self.env_file = env_file
        self.email = email
        self.http_client = http_client
        self.app_url = app_url

    async def renew(self) -> str:
        """
        Request the web app with the current token and keep the renewed one.

        Returns:
            The new token

        Raises:
            TokenRenewalError: If the response carries no token cookie
            httpx.HTTPError: If the request fails
        """
        logger.info("Requesting Simplenote token renewal...")
        current_token = os.getenv("SIMPERIUM_TOKEN", "")

        cookie_header = f"token={current_token}"
        if self.email:
            cookie_header += f"; email={quote(self.email)}"

        headers = {"Cookie": cookie_header, "User-Agent": USER_AGENT}

        if self.http_client is not None:
            response = await self.http_client.get(self.app_url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
                response = await client.get(self.app_url, headers=headers)

        set_cookies = []
        for hop in list(response.history) + [response]:
            set_cookies.extend(hop.headers.get_list("set-cookie"))

        new_token = parse_token_cookie(set_cookies)
        if not new_token:
            raise TokenRenewalError(f"No token Set-Cookie in response from {self.app_url} (HTTP {response.status_code})")

        self._store_token(new_token)
        logger.info("Token renewed and written back to .env")
        return new_token

    def _store_token(self, token: str) -> None:
        Path(self.env_file).touch(exist_ok=True)
        set_key(self.env_file, "SIMPERIUM_TOKEN", token, quote_mode="never")
        os.environ["SIMPERIUM_TOKEN"] = token
