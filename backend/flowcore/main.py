# /flowcore/main.py

import os
import time
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from flowcore.config.settings import settings
from flowcore.routes import llmflow, public
from flowcore.utils.lifecycle import lifespan
from flowcore.utils.metrics import response_time_histogram

app = FastAPI(
    title="flowcore",
    version="1.0.0",
    description="LLM orchestration core: declarative flows, two-stage retrieval and resilient model calls",
    lifespan=lifespan,
    openapi_url=f"/api/{settings.api_version}/openapi.json" if settings.environment != "production" else None,
    docs_url=f"/api/{settings.api_version}/docs" if settings.environment != "production" else None,
)

if settings.cors_allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def performance_middleware(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response_time_histogram.labels(endpoint=request.url.path).observe(process_time)
    response.headers["X-Process-Time"] = str(process_time)
    return response


app.include_router(public.router)
app.include_router(llmflow.router, prefix=f"/api/{settings.api_version}")

if __name__ == "__main__":
    uvicorn.run(
        "flowcore.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=settings.environment == "development",
    )
