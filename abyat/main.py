from fastapi import FastAPI

from abyat.config import settings
from abyat.dependencies import build_services
from abyat.logging_config import get_logger, setup_logging
from abyat.routers import webhook

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Abyat Imagine",
    description="WhatsApp design assistant for ABYAT Imagine",
    version="0.1.0",
)

app.state.services = build_services(settings)

app.include_router(webhook.router)


@app.on_event("startup")
async def log_startup() -> None:
    logger.info(
        "Abyat Imagine started",
        extra={
            "context": {
                "agent_configured": app.state.services.agent.is_configured,
                "gateway_configured": bool(settings.gateway_url),
            }
        },
    )


@app.on_event("shutdown")
async def stop_session_timers() -> None:
    await app.state.services.sessions.shutdown()


@app.get("/health")
async def health():
    services = app.state.services
    return {"status": "ok", "active_sessions": len(services.store)}
