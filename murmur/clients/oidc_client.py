"""
OIDC token introspection client (RFC 7662).

The API does not validate access tokens itself. Every bearer token is sent
to the identity provider's introspection endpoint, discovered from
`{issuer}/.well-known/openid-configuration`. The API authenticates against
that endpoint with a private-key JWT client assertion (RFC 7523) signed with
the application key downloaded from the IdP:

  { "type": "application", "keyId": "...", "key": "-----BEGIN RSA ...",
    "appId": "...", "clientId": "..." }

Only active tokens yield claims; everything else (inactive, malformed,
IdP unreachable) yields None so that the caller is treated as anonymous.
"""
import json
import logging
import time
import uuid
from typing import Optional

import httpx
import jwt

from murmur.config import settings

logger = logging.getLogger(__name__)

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


class OidcIntrospectionClient:
    def __init__(self) -> None:
        self.issuer = settings.oidc_issuer.rstrip("/")
        self._http: Optional[httpx.AsyncClient] = None
        self._introspection_endpoint: Optional[str] = None
        self._key: Optional[dict] = None

    async def start(self) -> None:
        self._http = httpx.AsyncClient(timeout=settings.oidc_timeout)
        if settings.oidc_application_key:
            self._key = json.loads(settings.oidc_application_key)
        try:
            resp = await self._http.get(f"{self.issuer}/.well-known/openid-configuration")
            resp.raise_for_status()
            self._introspection_endpoint = resp.json()["introspection_endpoint"]
            logger.info("OIDC introspection endpoint → %s", self._introspection_endpoint)
        except Exception as exc:
            # Discovery is retried lazily on the first introspection
            logger.warning("OIDC discovery failed (%s): %s", self.issuer, exc)

    async def stop(self) -> None:
        if self._http:
            await self._http.aclose()

    def _client_assertion(self) -> str:
        if not self._key:
            raise RuntimeError("oidc_application_key is not configured")
        now = int(time.time())
        client_id = self._key.get("clientId") or self._key.get("appId")
        payload = {
            "iss": client_id,
            "sub": client_id,
            "aud": self.issuer,
            "iat": now,
            "exp": now + 3600,
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(
            payload,
            self._key["key"],
            algorithm="RS256",
            headers={"kid": self._key["keyId"]},
        )

    async def _endpoint(self) -> str:
        if self._introspection_endpoint is None:
            resp = await self._http.get(f"{self.issuer}/.well-known/openid-configuration")
            resp.raise_for_status()
            self._introspection_endpoint = resp.json()["introspection_endpoint"]
        return self._introspection_endpoint

    async def introspect(self, token: str) -> dict | None:
        """
        Return the token's claims when the IdP reports it active, else None.

        Response (RFC 7662):
          { "active": true, "sub": "...", "preferred_username": "...",
            "given_name": "...", "family_name": "...", "exp": 1700000000 }
        """
        try:
            endpoint = await self._endpoint()
            resp = await self._http.post(
                endpoint,
                data={
                    "token": token,
                    "client_assertion_type": CLIENT_ASSERTION_TYPE,
                    "client_assertion": self._client_assertion(),
                },
            )
            resp.raise_for_status()
            claims: dict = resp.json()
        except Exception as exc:
            logger.warning("Token introspection failed: %s", exc)
            return None

        if not claims.get("active") or not claims.get("sub"):
            return None
        return claims


# Singleton
oidc_client = OidcIntrospectionClient()


def get_introspector() -> OidcIntrospectionClient:
    """FastAPI dependency returning the shared introspection client."""
    return oidc_client
