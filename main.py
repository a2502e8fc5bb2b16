import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

import config
import auth
import bookings
import catalog
import dashboard
import partners
import users

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger("serveit")

app = FastAPI(title="ServeIt Admin API", version="1.0.0")

# Reflect any allowed origin with credentials so the dashboard can be hosted separately.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[] if "*" in config.CORS_ORIGINS else config.CORS_ORIGINS,
    allow_origin_regex=".*" if "*" in config.CORS_ORIGINS else None,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def access_log(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed)
    return response


# ------------------ Errors ------------------

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


@app.exception_handler(HTTPException)
async def http_error(_request: Request, exc: HTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error(_request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        messages.append(f"{field}: {err.get('msg')}" if field else err.get("msg", "Invalid request"))
    return _error(400, "; ".join(messages) or "Invalid request")


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, str(exc) or "Internal Server Error")


# ------------------ Routes ------------------

@app.get("/api/health")
def health():
    return {"ok": True, "env": config.APP_ENV}


app.include_router(auth.public_router)
app.include_router(auth.router)
app.include_router(catalog.router)
app.include_router(partners.router)
app.include_router(users.router)
app.include_router(bookings.router)
app.include_router(dashboard.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
