import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from config import API_HOST, API_PORT, CORS_ALLOWED_ORIGINS, UPLOAD_DIR, UPLOAD_URL_PREFIX
from db import create_tables
from logging_config import setup_logging
from routes.classroom import class_chat_routes, class_file_routes, classroom_routes, ws_routes
from services.errors import ClassroomError

setup_logging()
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Classroom Collaboration API",
    description="Realtime classroom chat and file sharing",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount the local object store so deposited files and chat attachments are fetchable by URL
Path(UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=UPLOAD_DIR), name="uploads")


@app.exception_handler(ClassroomError)
async def classroom_error_handler(request: Request, exc: ClassroomError):
    """Render domain errors as ``{success: false, message}``."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


# Health check endpoint
@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint to verify server status
    """
    return {
        "status": "healthy",
        "message": "Server is running successfully"
    }

# Register routers
app.include_router(classroom_routes.router)
app.include_router(class_chat_routes.router)
app.include_router(class_file_routes.router)
app.include_router(ws_routes.router)

# Create database tables on startup
@app.on_event("startup")
def on_startup():
    logger.info("Creating database tables...")
    create_tables()
    logger.info("Database tables created successfully!")

# Root endpoint
@app.get("/", tags=["Root"])
def read_root():
    return {
        "message": "Welcome to the Classroom Collaboration API",
        "docs": "/docs",
        "health": "/health",
        "realtime": "/ws/chat"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=API_HOST, port=API_PORT, reload=True)
