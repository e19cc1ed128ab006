"""FastAPI routes for the QuickBooks OAuth flow.

Endpoints:
    GET  /auth/quickbooks   - Redirect to the Intuit consent page
    GET  /auth/callback     - Exchange the code and store the credential
    POST /auth/logout       - Forget the stored credential
    POST /auth/disconnect   - Alias of logout
"""

import html
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse

from src.config import get_settings
from src.errors.domain import DomainError
from src.services.quickbooks_auth import TokenManager
from src.services.service_provider import get_token_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_CONNECTED_PAGE = """<!DOCTYPE html>
<html>
<head>
  <title>QuickBooks Connected!</title>
  <style>
    body {{ font-family: Arial, sans-serif; margin: 40px; background: #f5f5f5; }}
    .container {{ max-width: 600px; margin: 0 auto; background: white; padding: 30px; border-radius: 10px; }}
    .success {{ color: #28a745; font-size: 24px; }}
  </style>
</head>
<body>
  <div class="container">
    <h1 class="success">QuickBooks Connected Successfully!</h1>
    <p><strong>Company ID:</strong> {realm_id}</p>
    <p><strong>Token Type:</strong> {token_type}</p>
    <p><strong>Expires At:</strong> {expires_at}</p>
    <p><strong>Storage:</strong> In-memory (tokens are lost on server restart)</p>
    <p>You can close this window and return to the chat.</p>
  </div>
</body>
</html>
"""

_ERROR_PAGE = """<h1>Error connecting to QuickBooks</h1>
<p>Error: {error}</p>
<p>Please try again by visiting <a href="/auth/quickbooks">/auth/quickbooks</a></p>
"""


@router.get("/quickbooks")
def start_authorization(tokens: TokenManager = Depends(get_token_manager)):
    """Redirect the browser to the QuickBooks authorization page."""
    if not get_settings().oauth_configured:
        return JSONResponse(
            status_code=500,
            content={
                "error": "QuickBooks OAuth is not configured. Set QUICKBOOKS_CLIENT_ID, "
                "QUICKBOOKS_CLIENT_SECRET and QUICKBOOKS_REDIRECT_URI."
            },
        )
    state = tokens.states.issue()
    return RedirectResponse(tokens.oauth_client.authorization_url(state))


@router.get("/callback")
async def authorization_callback(
    code: str | None = None,
    realmId: str | None = None,
    state: str | None = None,
    tokens: TokenManager = Depends(get_token_manager),
):
    """Complete the OAuth flow and render a status page."""
    if not code:
        return PlainTextResponse("Authorization code not provided", status_code=400)
    if not realmId:
        return PlainTextResponse("Company (realmId) not provided", status_code=400)
    if tokens.states.issued_any and not tokens.states.consume(state):
        logger.warning("OAuth callback with unknown state rejected")
        return HTMLResponse(
            _ERROR_PAGE.format(error="Invalid or expired OAuth state"), status_code=400
        )

    try:
        credential = await tokens.complete_authorization(code, realmId)
    except DomainError as e:
        logger.error("OAuth code exchange failed: %s", e.message)
        return HTMLResponse(_ERROR_PAGE.format(error=html.escape(e.message)), status_code=500)

    logger.info("QuickBooks connected for realm %s", credential.realm_id)
    return HTMLResponse(_CONNECTED_PAGE.format(
        realm_id=html.escape(credential.realm_id),
        token_type=html.escape(credential.token_type or "bearer"),
        expires_at=credential.expires_at.isoformat(),
    ))


@router.post("/logout")
def logout(tokens: TokenManager = Depends(get_token_manager)) -> dict:
    tokens.disconnect()
    return {
        "success": True,
        "message": "Logged out successfully",
        "action": "Visit /auth/quickbooks to reconnect",
    }


@router.post("/disconnect")
def disconnect(tokens: TokenManager = Depends(get_token_manager)) -> dict:
    tokens.disconnect()
    return {"success": True, "message": "Disconnected from QuickBooks"}
