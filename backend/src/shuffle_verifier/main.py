from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shuffle_verifier.api.deps import verification_service
from shuffle_verifier.api.routes import router
from shuffle_verifier.engine.models import ENGINE_VERSION


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await verification_service.shutdown()


app = FastAPI(title="Shuffle Verifier", version=ENGINE_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}
