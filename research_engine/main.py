from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from research_engine.api.routes import conversations, research
from research_engine.config import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Research engine starting (providers: {', '.join(settings.provider_order)})")
    yield
    logger.info("Research engine stopped")


app = FastAPI(
    title="Research Engine",
    description="Web research with streamed, cited answers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(research.router)
app.include_router(conversations.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "research-engine"}
