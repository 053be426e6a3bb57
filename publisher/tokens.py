"""
GBP Post Worker Tokens
======================
Stored refresh token -> short-lived Google access token.

Refresh tokens are stored as AES-GCM blobs {"kid", "nonce", "ciphertext"}
encrypted with one of the keys in TOKEN_ENC_KEYS ("kid:base64key,...").
Access tokens are kept in memory only.
"""

import os
import json
import logging
import base64
from typing import Dict, Any, Optional

import httpx
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import CredentialNotFound, TokenExchangeFailed

logger = logging.getLogger("gbp-post-worker")

GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "")
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

TOKEN_ENC_KEYS = os.environ.get("TOKEN_ENC_KEYS", "")


# =====================================================================
# Token Encryption
# =====================================================================

def parse_enc_keys(raw: str) -> Dict[str, bytes]:
    """Parse "kid:base64key,..." into a key ring. Keys must be 32 bytes."""
    keys: Dict[str, bytes] = {}
    if not raw:
        return keys

    clean = raw.strip().strip('"').replace("\\n", "")
    parts = [p.strip() for p in clean.split(",") if p.strip()]
    for part in parts:
        if ":" not in part:
            continue
        kid, b64key = part.split(":", 1)
        try:
            key = base64.b64decode(b64key.strip())
        except ValueError:
            logger.warning(f"Ignoring undecodable encryption key {kid.strip()}")
            continue
        if len(key) == 32:
            keys[kid.strip()] = key
    return keys


class TokenDecryptor:
    """Decrypts stored refresh tokens with a key ring."""

    def __init__(self, keys: Optional[Dict[str, bytes]] = None):
        self.keys = parse_enc_keys(TOKEN_ENC_KEYS) if keys is None else keys

    def decrypt_blob(self, blob: dict) -> str:
        kid = blob.get("kid", "v1")
        key = self.keys.get(kid)
        if not key:
            raise ValueError(f"Unknown key id: {kid}")

        nonce = base64.b64decode(blob["nonce"])
        ciphertext = base64.b64decode(blob["ciphertext"])
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None).decode("utf-8")

        # Plaintext is either the bare token or {"refresh_token": "..."}
        try:
            data = json.loads(plaintext)
        except ValueError:
            return plaintext
        if isinstance(data, dict):
            return data.get("refresh_token") or ""
        return plaintext

    def __call__(self, stored: Any) -> str:
        """Return the plaintext refresh token for a stored value.

        Accepts an encrypted blob (dict or JSON string). Anything that is not
        an encrypted blob is taken to be the token itself.
        """
        value = stored
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return stored
        if isinstance(value, dict):
            if "ciphertext" in value and "nonce" in value:
                return self.decrypt_blob(value)
            return value.get("refresh_token") or ""
        return str(stored)


# =====================================================================
# OAuth
# =====================================================================

class GoogleOAuthClient:
    """Refresh-token grant against Google's token endpoint."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        http: httpx.AsyncClient,
        token_url: str = GOOGLE_TOKEN_URL,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.http = http
        self.token_url = token_url

    async def refresh_access_token(self, refresh_token: str) -> str:
        try:
            resp = await self.http.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            raise TokenExchangeFailed(f"Token exchange request failed: {e}", stage="token_acquired") from e

        if resp.status_code != 200:
            raise TokenExchangeFailed(
                f"Token exchange failed: {resp.status_code} {resp.text[:200]}",
                details={"http_status": resp.status_code},
                stage="token_acquired",
            )

        try:
            access_token = resp.json().get("access_token")
        except ValueError:
            access_token = None
        if not access_token:
            raise TokenExchangeFailed("Token exchange returned no access_token", stage="token_acquired")
        return access_token


class TokenProvider:
    """
    Exchanges an account's stored refresh token for an access token.

    Built once at startup and handed to the orchestrator. The OAuth client is
    created on first use and then reused for the provider's lifetime.
    """

    def __init__(
        self,
        credential_store,
        http: httpx.AsyncClient,
        decrypt=None,
        client_id: str = GOOGLE_CLIENT_ID,
        client_secret: str = GOOGLE_CLIENT_SECRET,
    ):
        self.credential_store = credential_store
        self.http = http
        self.decrypt = decrypt or TokenDecryptor()
        self.client_id = client_id
        self.client_secret = client_secret
        self._oauth_client: Optional[GoogleOAuthClient] = None

    def _get_oauth_client(self) -> GoogleOAuthClient:
        if self._oauth_client is None:
            self._oauth_client = GoogleOAuthClient(self.client_id, self.client_secret, self.http)
        return self._oauth_client

    async def get_access_token(self, account_id: str, owner_id: str) -> str:
        stored = await self.credential_store.load_refresh_token(owner_id, account_id)
        if not stored:
            raise CredentialNotFound(
                f"No stored credential for account {account_id} (organization {owner_id})",
                stage="token_acquired",
            )

        try:
            refresh_token = self.decrypt(stored)
        except Exception as e:
            raise TokenExchangeFailed(f"Could not decrypt stored credential: {e}", stage="token_acquired") from e
        if not refresh_token:
            raise TokenExchangeFailed("Stored credential has no refresh token", stage="token_acquired")

        access_token = await self._get_oauth_client().refresh_access_token(refresh_token)
        logger.info(f"Access token acquired for account {account_id}")
        return access_token
