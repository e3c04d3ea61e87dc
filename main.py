from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.database import Database

import handlers  # noqa: F401  registers the actions
from config import ADMIN_EMAIL, ADMIN_NAME, ADMIN_PASSWORD, CORS_ORIGINS, PORT, SEED_DATA, configure_logging
from database import db, ensure_indexes, get_db
from dispatcher import ACTIONS, run_action
from errors import ApiError
from seed import seed_admin, seed_products

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
        if SEED_DATA:
            seed_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_NAME)
            seed_products(db)
    logger.info("api_started", actions=len(ACTIONS))
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return JSONResponse(status_code=400, content={"error": "Invalid request"})
    loc = [str(part) for part in errors[0].get("loc", ()) if part != "body"]
    message = f"{'.'.join(loc)}: {errors[0]['msg']}" if loc else errors[0]["msg"]
    return JSONResponse(status_code=400, content={"error": message})


class ActionRequest(BaseModel):
    action: str
    data: Optional[Dict[str, Any]] = None


# Routes
@app.get("/")
def read_root():
    return {"message": "Storefront API", "endpoint": "POST /api"}


@app.get("/health")
def health():
    return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/api")
def api(request: ActionRequest, authorization: Optional[str] = Header(default=None), database: Database = Depends(get_db)):
    status_code, body = run_action(request.action, request.data, authorization, database)
    return JSONResponse(status_code=status_code, content=body)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
