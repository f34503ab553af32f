"""Internal API routers — /bot/status, /bot/logs, /bot/configure, /bot/start, /bot/stop.

No business logic.  Delegates to the ``TradingBot`` injected at startup.
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from pulsetrade.broker.models import ExecutionConfig
from pulsetrade.models.bot_policy import BotPolicy

logger = logging.getLogger("pulsetrade")
router = APIRouter(prefix="/bot")

_bot = None  # Set via configure_routers()

_NUMERIC_FIELDS = {
    "min_score": int,
    "min_order_interval_ms": int,
    "account_percentage": float,
    "leverage": int,
}


def configure_routers(bot) -> None:
    """Inject the ``TradingBot`` (or duck-type for tests)."""
    global _bot  # noqa: PLW0603
    _bot = bot


def _require_bot():
    if _bot is None:
        raise HTTPException(status_code=503, detail="Bot not initialised")
    return _bot


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return the aggregated bot status."""
    return _require_bot().get_status().to_dict()


@router.get("/logs")
async def get_logs(limit: int = Query(default=100, ge=1, le=100)):
    """Return the operational log, newest first."""
    logs = _require_bot().get_logs()[:limit]
    return {"logs": [asdict(entry) for entry in logs]}


@router.post("/configure")
async def post_configure(body: dict):
    """Replace the bot policy (and optionally credentials).

    Unknown keys are ignored; omitted policy fields keep their current
    value.  Credentials are read from ``api_key``/``api_secret``/``testnet``.
    """
    bot = _require_bot()
    merged = bot.policy.to_dict()
    errors = []

    if "enabled" in body:
        if isinstance(body["enabled"], bool):
            merged["enabled"] = body["enabled"]
        else:
            errors.append("enabled must be true or false")

    for key, cast in _NUMERIC_FIELDS.items():
        if key not in body:
            continue
        try:
            merged[key] = cast(body[key])
        except (TypeError, ValueError, OverflowError):
            errors.append(f"{key} must be a number")

    if "margin_type" in body:
        merged["margin_type"] = str(body["margin_type"]).upper()

    if errors:
        return {"status": "error", "errors": errors}

    try:
        policy = BotPolicy(**merged)
    except (TypeError, ValueError) as exc:
        return {"status": "error", "errors": [str(exc)]}

    credentials: Optional[ExecutionConfig] = None
    if body.get("api_key") and body.get("api_secret"):
        credentials = ExecutionConfig(
            api_key=str(body["api_key"]),
            api_secret=str(body["api_secret"]),
            use_testnet=bool(body.get("testnet", True)),
        )

    await bot.configure(policy, credentials)
    logger.info("Bot policy updated via API: %s", policy.to_dict())
    return {"status": "ok", "status_detail": bot.get_status().to_dict()}


@router.post("/start")
async def post_start():
    bot = _require_bot()
    await bot.start()
    return {"status": "ok", "status_detail": bot.get_status().to_dict()}


@router.post("/stop")
async def post_stop():
    bot = _require_bot()
    await bot.stop()
    return {"status": "ok"}
