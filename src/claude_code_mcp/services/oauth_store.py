"""In-memory OAuth 2.1 client, code and token store.

One store is created per SSE application and cleared at shutdown. Secrets
are kept bcrypt-hashed and tokens SHA-256-hashed, so the store never holds a
credential in plaintext.
"""

import base64
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import bcrypt

logger = logging.getLogger("claude_code_mcp.oauth")

PUBLIC_CLIENT_AUTH_METHOD = "none"
CLIENT_AUTH_METHODS = ("client_secret_post", "client_secret_basic", PUBLIC_CLIENT_AUTH_METHOD)


class OAuthError(Exception):
    """An OAuth protocol error with its RFC 6749 error code."""

    def __init__(self, error: str, description: str, status_code: int = 400):
        super().__init__(description)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.error, "error_description": self.description}


# =============================================================================
# Records
# =============================================================================


@dataclass
class RegisteredClient:
    client_id: str
    secret_hash: Optional[str]
    redirect_uris: list[str]
    token_endpoint_auth_method: str
    client_name: Optional[str] = None
    issued_at: int = field(default_factory=lambda: int(time.time()))
    # Set by the first successful code exchange
    activated: bool = False

    @property
    def is_public(self) -> bool:
        return self.token_endpoint_auth_method == PUBLIC_CLIENT_AUTH_METHOD


@dataclass
class AuthorizationCode:
    client_id: str
    redirect_uri: str
    expires_at: float
    code_challenge: Optional[str] = None


@dataclass
class IssuedToken:
    client_id: str
    expires_at: float


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int

    def to_response(self) -> dict:
        return {
            "access_token": self.access_token,
            "token_type": "Bearer",
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
        }


# =============================================================================
# Hashing Utilities
# =============================================================================


def _hash_token(token: str) -> str:
    """Hash a token using SHA-256 for storage."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _hash_secret(secret: str) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _verify_secret(secret: str, secret_hash: str) -> bool:
    return bcrypt.checkpw(secret.encode("utf-8"), secret_hash.encode("utf-8"))


def s256_challenge(verifier: str) -> str:
    """Compute the PKCE S256 code challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


# =============================================================================
# Store
# =============================================================================


class OAuthStore:
    """Registered clients, authorization codes and issued tokens."""

    def __init__(
        self,
        code_ttl_seconds: int = 300,
        token_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 30 * 24 * 3600,
        unused_client_ttl_seconds: int = 3600,
        max_clients: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.code_ttl_seconds = code_ttl_seconds
        self.token_ttl_seconds = token_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.unused_client_ttl_seconds = unused_client_ttl_seconds
        self.max_clients = max_clients
        self._clock = clock
        self._clients: dict[str, RegisteredClient] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._access_tokens: dict[str, IssuedToken] = {}
        self._refresh_tokens: dict[str, IssuedToken] = {}

    # --- Clients ---

    def register_client(
        self,
        redirect_uris: list[str],
        token_endpoint_auth_method: str = "client_secret_post",
        client_name: Optional[str] = None,
    ) -> tuple[RegisteredClient, Optional[str]]:
        """Register a client; returns the record and the plaintext secret (None for public clients)."""
        if token_endpoint_auth_method not in CLIENT_AUTH_METHODS:
            raise OAuthError(
                "invalid_client_metadata",
                f"Unsupported token_endpoint_auth_method: {token_endpoint_auth_method}",
            )
        if not redirect_uris:
            raise OAuthError("invalid_redirect_uri", "At least one redirect_uri is required")

        # Unused clients expire before the cap is checked
        self.purge_expired()
        if len(self._clients) >= self.max_clients:
            logger.warning(f"Rejected client registration: {self.max_clients} clients registered")
            raise OAuthError("temporarily_unavailable", "Client registration limit reached", status_code=503)

        client_id = f"claude_{secrets.token_hex(8)}"
        secret = None
        secret_hash = None
        if token_endpoint_auth_method != PUBLIC_CLIENT_AUTH_METHOD:
            secret = secrets.token_hex(32)
            secret_hash = _hash_secret(secret)

        client = RegisteredClient(
            client_id=client_id,
            secret_hash=secret_hash,
            redirect_uris=list(redirect_uris),
            token_endpoint_auth_method=token_endpoint_auth_method,
            client_name=client_name,
            issued_at=int(self._clock()),
        )
        self._clients[client_id] = client
        logger.info(f"Registered OAuth client {client_id}")
        return client, secret

    def get_client(self, client_id: Optional[str]) -> Optional[RegisteredClient]:
        if not client_id:
            return None
        return self._clients.get(client_id)

    def authenticate_client(self, client_id: Optional[str], client_secret: Optional[str]) -> RegisteredClient:
        """Verify client credentials for the token endpoint."""
        client = self.get_client(client_id)
        if client is None:
            raise OAuthError("invalid_client", "Unknown client", status_code=401)
        if client.is_public:
            return client
        if not client_secret or not _verify_secret(client_secret, client.secret_hash):
            raise OAuthError("invalid_client", "Client authentication failed", status_code=401)
        return client

    # --- Authorization codes ---

    def issue_code(
        self,
        client: RegisteredClient,
        redirect_uri: str,
        code_challenge: Optional[str] = None,
    ) -> str:
        self.purge_expired()
        code = secrets.token_hex(16)
        self._codes[code] = AuthorizationCode(
            client_id=client.client_id,
            redirect_uri=redirect_uri,
            expires_at=self._clock() + self.code_ttl_seconds,
            code_challenge=code_challenge,
        )
        return code

    def exchange_code(
        self,
        client: RegisteredClient,
        code: Optional[str],
        redirect_uri: Optional[str] = None,
        code_verifier: Optional[str] = None,
    ) -> TokenPair:
        """Consume an authorization code and issue tokens.

        The code is removed on first presentation, whether or not the
        exchange succeeds.
        """
        record = self._codes.pop(code, None) if code else None
        if record is None or record.expires_at < self._clock():
            raise OAuthError("invalid_grant", "Authorization code is invalid or expired")
        if record.client_id != client.client_id:
            raise OAuthError("invalid_grant", "Authorization code was issued to another client")
        if redirect_uri and redirect_uri != record.redirect_uri:
            raise OAuthError("invalid_grant", "redirect_uri does not match the authorization request")
        if record.code_challenge:
            if not code_verifier or not secrets.compare_digest(
                s256_challenge(code_verifier), record.code_challenge
            ):
                raise OAuthError("invalid_grant", "PKCE verification failed")

        client.activated = True
        return self._issue_tokens(client.client_id)

    # --- Tokens ---

    def refresh(self, client: RegisteredClient, refresh_token: Optional[str]) -> TokenPair:
        """Rotate a refresh token: revoke it and issue a new pair."""
        key = _hash_token(refresh_token) if refresh_token else None
        record = self._refresh_tokens.get(key) if key else None
        if record is None or record.expires_at < self._clock():
            raise OAuthError("invalid_grant", "Refresh token is invalid or expired")
        if record.client_id != client.client_id:
            raise OAuthError("invalid_grant", "Refresh token was issued to another client")

        del self._refresh_tokens[key]
        return self._issue_tokens(client.client_id)

    def validate_access_token(self, token: Optional[str]) -> Optional[str]:
        """Return the client id for a live access token, None otherwise."""
        if not token:
            return None
        record = self._access_tokens.get(_hash_token(token))
        if record is None:
            return None
        if record.expires_at < self._clock():
            del self._access_tokens[_hash_token(token)]
            return None
        return record.client_id

    def _issue_tokens(self, client_id: str) -> TokenPair:
        now = self._clock()
        access_token = secrets.token_hex(32)
        refresh_token = secrets.token_hex(32)
        self._access_tokens[_hash_token(access_token)] = IssuedToken(
            client_id=client_id, expires_at=now + self.token_ttl_seconds
        )
        self._refresh_tokens[_hash_token(refresh_token)] = IssuedToken(
            client_id=client_id, expires_at=now + self.refresh_ttl_seconds
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.token_ttl_seconds,
        )

    # --- Lifecycle ---

    def purge_expired(self) -> int:
        """Drop expired codes, tokens and unused clients; returns how many were removed."""
        now = self._clock()
        removed = 0

        stale = [
            client_id
            for client_id, client in self._clients.items()
            if not client.activated and client.issued_at + self.unused_client_ttl_seconds < now
        ]
        for client_id in stale:
            del self._clients[client_id]
        removed += len(stale)

        for table in (self._codes, self._access_tokens, self._refresh_tokens):
            expired = [key for key, record in table.items() if record.expires_at < now]
            for key in expired:
                del table[key]
            removed += len(expired)
        return removed

    def clear(self) -> None:
        self._clients.clear()
        self._codes.clear()
        self._access_tokens.clear()
        self._refresh_tokens.clear()
