"""
Admission Gateway API Routes
HTTP endpoints guarded by the named rate limiting policies
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from admission_gateway.core.config import get_settings
from admission_gateway.rl.registry import LOGIN, MESSAGE_SEND, WEBHOOK, RateLimitRegistry
from admission_gateway.rpc import RpcContext, RpcRouter
from admission_gateway.rpc.errors import PARSE_ERROR

logger = logging.getLogger(__name__)

# Create API router
router = APIRouter()


class LoginRequest(BaseModel):
    """Credentials submitted to the login endpoint"""
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class SendMessageRequest(BaseModel):
    """Outbound message handed to the delivery layer"""
    to: str = Field(..., min_length=1, description="Recipient phone number or chat id")
    text: str = Field(..., min_length=1, max_length=4096)
    channel: str = Field(default="whatsapp", pattern="^(whatsapp|telegram)$")


def get_rate_limits(request: Request) -> Optional[RateLimitRegistry]:
    """Registry attached to the app at startup, or None when rate limiting is disabled"""
    return getattr(request.app.state, "rate_limits", None)


def enforce(policy_name: str):
    """
    Route dependency applying `policy_name` from the app's registry.

    Resolved per request so the registry stays owned by the application
    instance rather than by this module.
    """
    async def dependency(request: Request, response: Response) -> None:
        registry = get_rate_limits(request)
        if registry is None:
            return
        await registry.dependency(policy_name)(request, response)
    return dependency


@router.get("/health",
           summary="Health Check",
           description="Check if the gateway is running and healthy")
@router.get("/api/health", include_in_schema=False)
async def health_check():
    """Health check endpoint, exempt from the global rate limit"""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "admission-gateway",
        "version": "0.1.0",
        "environment": "development" if settings.DEBUG else "production"
    }


@router.post("/api/auth/login", dependencies=[Depends(enforce(LOGIN))])
async def login(credentials: LoginRequest):
    """Accept a login attempt; credential checking belongs to the auth service"""
    logger.info("Login attempt accepted for verification")
    return {"status": "accepted", "email": credentials.email}


@router.post("/api/messages/send",
            status_code=status.HTTP_202_ACCEPTED,
            dependencies=[Depends(enforce(MESSAGE_SEND))])
async def send_message(message: SendMessageRequest):
    """Queue a message for the delivery layer"""
    return {"status": "queued", "channel": message.channel, "to": message.to}


@router.post("/api/webhooks/{channel}", dependencies=[Depends(enforce(WEBHOOK))])
async def receive_webhook(channel: str, request: Request):
    """Acknowledge a provider webhook"""
    body = await request.body()
    logger.debug("Webhook received", extra={"channel": channel, "size": len(body)})
    return {"received": True, "channel": channel}


@router.get("/api/v1/status")
async def api_status():
    """Public API status; callers with an API key are metered by the api-key policy"""
    return {"status": "ok", "api": "v1"}


@router.get("/api/rate-limits")
async def rate_limit_stats(request: Request):
    """Per-policy counters for observability"""
    registry = get_rate_limits(request)
    if registry is None:
        return {"enabled": False, "policies": {}}
    return {"enabled": True, "policies": registry.stats()}


@router.post("/api/trpc")
async def rpc_endpoint(request: Request):
    """JSON-RPC 2.0 transport for the procedures in `app.state.rpc_router`"""
    rpc_router: Optional[RpcRouter] = getattr(request.app.state, "rpc_router", None)
    if rpc_router is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="RPC router not initialized"
        )

    try:
        payload: Any = await request.json()
    except ValueError:
        return JSONResponse(
            content={
                "jsonrpc": "2.0",
                "id": None,
                "error": {"code": PARSE_ERROR, "message": "Parse error"}
            }
        )

    ctx = RpcContext(method="", request=request)
    result: Dict[str, Any] = await rpc_router.dispatch(payload, ctx)
    return JSONResponse(content=result, headers=ctx.response_headers)
