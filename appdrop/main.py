import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from appdrop.routers.artifacts import router as artifacts_router
from appdrop.services.rate_limiter import RATE_LIMIT_SWEEP_SECONDS, get_download_limiter

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:8080").split(",")
    if origin.strip()
]


async def sweep_rate_limits(interval: float = RATE_LIMIT_SWEEP_SECONDS):
    limiter = get_download_limiter()
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await run_in_threadpool(limiter.sweep)
        except Exception:
            logger.exception("Rate limit sweep failed")
            continue
        if removed:
            logger.debug("Swept %d expired rate limit windows", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = asyncio.create_task(sweep_rate_limits())
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass


app = FastAPI(title="appdrop", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(artifacts_router)

@app.get("/")
def read_root():
    return {"message": "appdrop is running"}
