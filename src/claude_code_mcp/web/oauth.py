"""OAuth 2.1 endpoints shared by the SSE servers.

Registered clients are approved automatically: there is no end-user login.
A redirect only ever goes to a URI the client registered.
"""

import base64
import binascii
import json
import logging
from urllib.parse import unquote, urlencode

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse
from starlette.routing import Route

from claude_code_mcp.services.oauth_store import CLIENT_AUTH_METHODS, OAuthError, OAuthStore

logger = logging.getLogger("claude_code_mcp.oauth")

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _store(request: Request) -> OAuthStore:
    return request.app.state.oauth_store


def _error_response(error: OAuthError) -> JSONResponse:
    headers = dict(NO_STORE)
    if error.status_code == 401:
        headers["WWW-Authenticate"] = 'Basic realm="oauth"'
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=headers)


def _redirect(redirect_uri: str, params: dict) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    separator = "&" if "?" in redirect_uri else "?"
    return RedirectResponse(f"{redirect_uri}{separator}{query}", status_code=302)


async def discovery(request: Request) -> JSONResponse:
    """Authorization server metadata (RFC 8414)."""
    base_url = str(request.base_url).rstrip("/")
    return JSONResponse(
        {
            "issuer": base_url,
            "authorization_endpoint": f"{base_url}/oauth/authorize",
            "token_endpoint": f"{base_url}/oauth/token",
            "registration_endpoint": f"{base_url}/register",
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code", "refresh_token"],
            "token_endpoint_auth_methods_supported": list(CLIENT_AUTH_METHODS),
            "code_challenge_methods_supported": ["S256"],
        }
    )


async def register(request: Request) -> JSONResponse:
    """Dynamic client registration (RFC 7591)."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error_response(OAuthError("invalid_client_metadata", "Request body must be JSON"))
    if not isinstance(body, dict):
        return _error_response(OAuthError("invalid_client_metadata", "Request body must be a JSON object"))

    redirect_uris = body.get("redirect_uris") or []
    if not isinstance(redirect_uris, list) or not all(isinstance(u, str) for u in redirect_uris):
        return _error_response(OAuthError("invalid_redirect_uri", "redirect_uris must be a list of strings"))

    try:
        client, secret = _store(request).register_client(
            redirect_uris,
            token_endpoint_auth_method=body.get("token_endpoint_auth_method") or "client_secret_post",
            client_name=body.get("client_name"),
        )
    except OAuthError as e:
        return _error_response(e)

    registration = {
        "client_id": client.client_id,
        "client_id_issued_at": client.issued_at,
        "grant_types": ["authorization_code", "refresh_token"],
        "response_types": ["code"],
        "redirect_uris": client.redirect_uris,
        "token_endpoint_auth_method": client.token_endpoint_auth_method,
    }
    if secret:
        registration["client_secret"] = secret
        registration["client_secret_expires_at"] = 0
    if client.client_name:
        registration["client_name"] = client.client_name
    return JSONResponse(registration, status_code=201, headers=NO_STORE)


async def authorize(request: Request):
    """Issue an authorization code and redirect back to the client."""
    params = request.query_params
    store = _store(request)

    client = store.get_client(params.get("client_id"))
    if client is None:
        return _error_response(OAuthError("invalid_client", "Unknown client_id"))

    redirect_uri = params.get("redirect_uri")
    if not redirect_uri and len(client.redirect_uris) == 1:
        redirect_uri = client.redirect_uris[0]
    if redirect_uri not in client.redirect_uris:
        return _error_response(OAuthError("invalid_request", "redirect_uri is not registered for this client"))

    state = params.get("state")
    if params.get("response_type") != "code":
        return _redirect(redirect_uri, {"error": "unsupported_response_type", "state": state})

    code_challenge = params.get("code_challenge")
    if code_challenge and params.get("code_challenge_method") != "S256":
        return _redirect(
            redirect_uri,
            {"error": "invalid_request", "error_description": "code_challenge_method must be S256", "state": state},
        )
    if client.is_public and not code_challenge:
        return _redirect(
            redirect_uri,
            {"error": "invalid_request", "error_description": "Public clients must use PKCE", "state": state},
        )

    code = store.issue_code(client, redirect_uri, code_challenge)
    logger.info(f"Issued authorization code for client {client.client_id}")
    return _redirect(redirect_uri, {"code": code, "state": state})


async def _token_params(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise OAuthError("invalid_request", "Request body must be JSON") from e
        if not isinstance(body, dict):
            raise OAuthError("invalid_request", "Request body must be a JSON object")
        return body
    form = await request.form()
    return {key: value for key, value in form.items()}


def _client_credentials(request: Request, params: dict) -> tuple:
    """Client id and secret from HTTP Basic auth or the request body."""
    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("basic "):
        try:
            decoded = base64.b64decode(auth_header[6:].strip()).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise OAuthError("invalid_client", "Malformed Basic credentials", status_code=401) from e
        client_id, sep, client_secret = decoded.partition(":")
        if not sep:
            raise OAuthError("invalid_client", "Malformed Basic credentials", status_code=401)
        return unquote(client_id), unquote(client_secret)
    return params.get("client_id"), params.get("client_secret")


async def token(request: Request) -> JSONResponse:
    """Token endpoint: authorization_code and refresh_token grants."""
    store = _store(request)
    try:
        params = await _token_params(request)
        client_id, client_secret = _client_credentials(request, params)
        client = store.authenticate_client(client_id, client_secret)

        grant_type = params.get("grant_type")
        if grant_type == "authorization_code":
            pair = store.exchange_code(
                client,
                params.get("code"),
                redirect_uri=params.get("redirect_uri"),
                code_verifier=params.get("code_verifier"),
            )
        elif grant_type == "refresh_token":
            pair = store.refresh(client, params.get("refresh_token"))
        else:
            raise OAuthError("unsupported_grant_type", f"Unsupported grant_type: {grant_type}")
    except OAuthError as e:
        logger.info(f"Token request rejected: {e.error} ({e.description})")
        return _error_response(e)

    return JSONResponse(pair.to_response(), headers=NO_STORE)


def oauth_routes() -> list[Route]:
    return [
        Route("/.well-known/oauth-authorization-server", discovery, methods=["GET"]),
        Route("/register", register, methods=["POST"]),
        Route("/oauth/authorize", authorize, methods=["GET"]),
        Route("/oauth/token", token, methods=["POST"]),
    ]
