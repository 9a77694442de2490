# /flowcore/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from flowcore.config.settings import settings
from flowcore.services.llm_service import model_client
from flowcore.services.session_store import RedisSessionStore, session_store
from flowcore.utils.logging import setup_logging
from flowcore.workflows.registry import command_registry

# Startup and shutdown of the orchestration service.

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()
    logger.info("Application starting up...")
    logger.info(f"Session store backend: {settings.session_store_backend}. Built-in commands: {command_registry.names()}.")

    yield

    logger.info("Application shutting down...")
    await model_client.close()
    if isinstance(session_store, RedisSessionStore):
        await session_store.close()
