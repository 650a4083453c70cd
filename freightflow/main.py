from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from freightflow.core.config import settings
from freightflow.core.logging import setup_logging, get_logger
from freightflow.api import actions, classify, messages, pipeline, reports, shipments
from freightflow.services.action_rules import ActionRulesEngine

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from freightflow.db.session import init_db

    logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION}")
    init_db()
    yield


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# One rule cache per process
app.state.action_engine = ActionRulesEngine()

app.include_router(classify.router)
app.include_router(actions.router)
app.include_router(messages.router)
app.include_router(shipments.router)
app.include_router(reports.router)
app.include_router(pipeline.router)


@app.get("/health")
def health():
    return {"status": "ok", "service": settings.APP_NAME, "version": settings.APP_VERSION}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
