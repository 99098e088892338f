import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from starlette.middleware.base import BaseHTTPMiddleware
from circulation.config import settings
from circulation.database import engine, Base
from circulation.errors import CirculationError, DependencyFailure
from circulation.routes import auth, book, fine, loan, users

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log incoming requests."""
    async def dispatch(self, request: Request, call_next):
        auth_header = request.headers.get("Authorization")
        client_ip = request.client.host if request.client else "unknown"
        logger.info(f"{request.method} {request.url.path} - IP: {client_ip} - Auth: {'Present' if auth_header else 'Missing'}")

        response = await call_next(request)
        return response

Base.metadata.create_all(bind=engine)


app = FastAPI(
    title="Library Circulation API",
    description="Back office API for loans, returns, renewals and fines",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Logging middleware (last, to log everything)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(CirculationError)
async def circulation_error_handler(request: Request, exc: CirculationError):
    """Render core failures with their displayable reason."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.reason}")
    else:
        logger.info(f"{request.method} {request.url.path} refused ({exc.code}): {exc.reason}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(OperationalError)
async def database_unavailable_handler(request: Request, exc: OperationalError):
    """Database outages outside the loan engine are retryable too."""
    logger.error(f"{request.method} {request.url.path} database error: {exc}")
    failure = DependencyFailure("The database did not respond in time. Please retry.")
    return JSONResponse(status_code=failure.status_code, content=failure.to_dict())


# Include routers
app.include_router(auth.router)
app.include_router(book.router)
app.include_router(loan.router)
app.include_router(fine.router)
app.include_router(users.router)

@app.get("/")
async def root():
    return {"message": "Library Circulation API", "version": "1.0.0"}

@app.get("/api/health")
async def health_check():
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "circulation.main:app",
        host=settings.host,
        port=settings.port,
        reload=True
    )
