"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat import ChatRelay, ImageGenerator, ProviderClient
from .config import PROJECT_ROOT, Settings, get_settings
from .logging_handlers import DateStampedFileHandler, cleanup_old_logs
from .openrouter import OpenRouterClient
from .routers.chat import root_router
from .routers.chat import router as chat_router
from .routers.digest import router as digest_router
from .services.digest import DigestGenerator
from .services.digest_scheduler import DigestScheduler
from .services.digest_store import DigestStore
from .services.push import ExpoPushNotifier

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> list[Path]:
    """Configure logging from LOG_LEVEL / LOG_FILE / LOG_DIR; return log dirs."""
    # Load .env file first so LOG_* variables are visible
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)

    handlers: list[logging.Handler] = []
    log_dirs: list[Path] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        handlers.append(DateStampedFileHandler(log_dir))
        log_dirs.append(Path(log_dir))

    # Always add console handler
    handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("chat_relay").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet noisy HTTP client logs unless debugging
    noisy_level = log_level if log_level <= logging.DEBUG else logging.WARNING
    logging.getLogger("httpx").setLevel(noisy_level)
    logging.getLogger("httpcore").setLevel(noisy_level)

    return log_dirs


def _resolve_under(base: Path, p: Path) -> Path:
    # Allow absolute paths as-is (useful for tests and external mounts).
    if p.is_absolute():
        return p.resolve()
    resolved = (base / p).resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(f"Configured path {resolved} escapes project root {base}")
    return resolved


def create_app(settings: Settings | None = None) -> FastAPI:
    # Configure logging first thing
    log_dirs = _configure_logging()

    settings = settings or get_settings()
    project_root = PROJECT_ROOT

    openrouter_client = OpenRouterClient(settings)
    chat_provider = ProviderClient(openrouter_client, model=settings.chat_model)
    relay = ChatRelay(
        chat_provider,
        ImageGenerator.from_settings(settings),
        system_instruction=settings.system_instruction,
        deadline_seconds=settings.stream_deadline_seconds,
    )

    digest_store = DigestStore(
        _resolve_under(project_root, settings.digest_users_path),
        _resolve_under(project_root, settings.digest_history_path),
    )
    digest_scheduler = DigestScheduler(
        digest_store,
        DigestGenerator(chat_provider, model=settings.digest_model),
        ExpoPushNotifier(str(settings.expo_push_url)),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if log_dirs:
            try:
                retention = int(os.getenv("LOG_RETENTION_HOURS", "48"))
            except ValueError:
                retention = 48
            cleanup_old_logs(log_dirs, retention, logging.getLogger(__name__))
        if settings.digest_enabled:
            digest_scheduler.start()
        logging.getLogger(__name__).info(
            "Chat relay ready: model=%s, image primary tier %s",
            settings.chat_model,
            "configured" if settings.image_primary_configured else "not configured",
        )
        try:
            yield
        finally:
            await digest_scheduler.shutdown()
            # Add timeout to prevent hanging during shutdown (especially in tests)
            try:
                await asyncio.wait_for(openrouter_client.aclose(), timeout=2.0)
            except (asyncio.TimeoutError, Exception) as exc:
                logging.warning("Error closing OpenRouter client: %s", exc)

    app = FastAPI(
        title="Monox Chat Relay",
        version="0.1.0",
        description="Streaming chat relay with image generation and daily digests.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.chat_relay = relay
    app.state.digest_store = digest_store
    app.state.digest_scheduler = digest_scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(root_router)
    app.include_router(chat_router)
    app.include_router(digest_router)

    return app


__all__ = ["create_app"]
