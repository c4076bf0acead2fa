from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from friendgraph.core.config import settings
from friendgraph.core.exceptions import FriendGraphException
from friendgraph.db.session import SessionLocal
from friendgraph.db.init_db import create_all_tables
from friendgraph.middleware.request_logging import RequestLoggingMiddleware
from friendgraph.middleware.auth_logging import AuthLoggingMiddleware
from friendgraph.modules.friendships.api.router import router as friendships_router
from friendgraph.modules.notifications.api.router import router as notifications_router
from friendgraph.modules.realtime.api.router import router as realtime_router
from friendgraph.modules.realtime.broker import ChangeEventBroker
from friendgraph.modules.realtime.events import bind_change_events

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("app")

# Initialize the FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    debug=settings.DEBUG,
    description="Friend requests, friendships and live relationship status",
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting server in {settings.ENVIRONMENT} mode")

    create_all_tables()

    # One broker per application; every committed relationship change goes through it
    app.state.session_factory = SessionLocal
    app.state.change_broker = ChangeEventBroker()
    app.state.unbind_change_events = bind_change_events(SessionLocal, app.state.change_broker)

@app.on_event("shutdown")
async def shutdown_event():
    app.state.unbind_change_events()
    app.state.change_broker.close()
    logger.info("Realtime change broker shut down")

@app.exception_handler(FriendGraphException)
async def friendgraph_exception_handler(request: Request, exc: FriendGraphException):
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

# Add middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(AuthLoggingMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers
app.include_router(friendships_router, prefix=f"{settings.API_V1_STR}/friends", tags=["friendships"])
app.include_router(realtime_router, prefix=f"{settings.API_V1_STR}/friends", tags=["realtime"])
app.include_router(notifications_router, prefix=f"{settings.API_V1_STR}/notifications", tags=["notifications"])

@app.get("/")
async def root():
    return {
        "message": "Welcome to FriendGraph",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "documentation": "/docs" if settings.DEBUG else None,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("friendgraph.main:app", host="0.0.0.0", port=8000, reload=True)
