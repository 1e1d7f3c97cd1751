# oidc.py — OpenID Connect authorization-code client
import logging
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import Request
from pydantic import BaseModel

from config import Settings
from errors import UpstreamError

logger = logging.getLogger("kanban.oidc")


class UserInfo(BaseModel):
    sub: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@")[0]


class IdentityGateway:
    """Talks to the identity provider. Fails fast: no retries."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.settings.oidc_client_id,
            "redirect_uri": self.settings.oidc_redirect_uri,
            "response_type": "code",
            "scope": self.settings.oidc_scope,
            "state": state,
        }
        base = self.settings.oidc_url.rstrip("/") + self.settings.oidc_authorize_path
        return f"{base}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> str:
        """Swap an authorization code for an access token"""
        url = self.settings.oidc_backend_url + self.settings.oidc_token_path
        try:
            resp = await self.client.post(url, data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.settings.oidc_client_id,
                "client_secret": self.settings.oidc_client_secret,
                "redirect_uri": self.settings.oidc_redirect_uri,
            })
        except httpx.HTTPError as e:
            raise UpstreamError(f"Token exchange failed: {e}") from e
        if resp.status_code != 200:
            raise UpstreamError(f"Token exchange failed with status {resp.status_code}")

        access_token = resp.json().get("access_token")
        if not access_token:
            raise UpstreamError("Token response carried no access_token")
        return access_token

    async def fetch_user_info(self, access_token: str) -> UserInfo:
        url = self.settings.oidc_backend_url + self.settings.oidc_userinfo_path
        try:
            resp = await self.client.get(url, headers={"Authorization": f"Bearer {access_token}"})
        except httpx.HTTPError as e:
            raise UpstreamError(f"Userinfo request failed: {e}") from e
        if resp.status_code != 200:
            raise UpstreamError(f"Userinfo request failed with status {resp.status_code}")
        return UserInfo.model_validate(resp.json())

    async def check_reachable(self) -> bool:
        """HEAD the provider root with a bounded wait"""
        resp = await self.client.head(
            self.settings.oidc_backend_url + "/",
            timeout=self.settings.health_check_timeout,
        )
        return resp.is_success


def get_identity_gateway(request: Request) -> IdentityGateway:
    return request.app.state.identity
