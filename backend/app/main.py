from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import (
    ai,
    attachments,
    auth,
    channels,
    conversations,
    groups,
    health,
    members,
    messages,
    notifications,
    roles,
    ws,
)
from app.core.config import settings, logger
from app.core.middleware import (
    RequestContextMiddleware,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.db.database import create_tables
from app.realtime.feed import change_feed


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await create_tables()
    app.state.redis_bridge = None
    if settings.REDIS_ENABLED and not settings.TESTING:
        # Best-effort: the feed stays process-local when Redis is down
        from app.core.redis import redis_client
        from app.realtime.redis_bridge import RedisFeedBridge

        bridge = RedisFeedBridge(redis_client, change_feed)
        if bridge.start():
            app.state.redis_bridge = bridge
    logger.info("Startup complete (env=%s)", settings.APP_ENV)
    yield
    # Shutdown
    bridge = getattr(app.state, "redis_bridge", None)
    if bridge is not None:
        bridge.stop()


app = FastAPI(
    title="Syncora API",
    description="Groups, roles and channels for the Syncora collaboration app",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(groups.router, prefix="/api/groups", tags=["Groups"])
app.include_router(roles.router, prefix="/api/groups", tags=["Roles"])
app.include_router(members.router, prefix="/api/groups", tags=["Members"])
app.include_router(channels.router, prefix="/api/groups", tags=["Channels"])
app.include_router(ai.router, prefix="/api/groups", tags=["AI"])
app.include_router(messages.router, prefix="/api/channels", tags=["Messages"])
app.include_router(attachments.router, prefix="/api", tags=["Attachments"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["Conversations"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(ws.router, prefix="/ws")
app.include_router(health.router, prefix="", tags=["Health"])
