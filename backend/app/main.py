from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routes.analysis import router as analysis_router
from routes.interviews import close_backend_client
from routes.interviews import router as interviews_router
from routes.interviews_ws import router as interviews_ws_router
from routes.upload import router as upload_router


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    await close_backend_client()


app = FastAPI(title="Mockview API", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(upload_router, prefix="/api")
app.include_router(analysis_router, prefix="/api")
app.include_router(interviews_router, prefix="/api")
app.include_router(interviews_ws_router, prefix="/api")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
