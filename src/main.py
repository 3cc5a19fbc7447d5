# main.py (project root)
import os
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from src.routers.oauth_router import router as oauth_router
from src.infrastructure.database import init_db
from src.middleware.logging import RequestIdMiddleware
from src.services.errors import OAuthConnectionError
import structlog

def configure_structlog():
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
    )

configure_structlog()
logger = structlog.get_logger()

app = FastAPI(title="OAuth Connection Manager")

app.add_middleware(RequestIdMiddleware)

app.include_router(oauth_router)


@app.exception_handler(OAuthConnectionError)
async def oauth_error_handler(request: Request, exc: OAuthConnectionError):
    logger.warning("oauth_request_failed", error_type=type(exc).__name__, error=str(exc), status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.user_message})


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.on_event("startup")
async def on_startup():
    await init_db()
    logger.info("app_startup")

if __name__ == "__main__":
    uvicorn.run("src.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)), reload=True)
