"""Try-On Studio - FastAPI backend for the wardrobe, stylist chat and try-on generation."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import GENERIC_FAILURE_MESSAGE, ImageNormalizationError, TryOnStudioError
from .models import ClothingSummary
from .schemas import AnalyzeRequest, ChatRequest, GenerateImageRequest
from .services.analyzer_service import AnalyzerService
from .services.ark_client import ArkClient, extract_message_text
from .services.tryon_service import TryOnService
from .utils.cache import CacheJanitor, ExpiringLRUCache
from .utils.image_utils import describe_image, ensure_data_url, is_legacy_format, mime_of, normalize_image

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "Invalid request")


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[ArkClient] = None,
) -> FastAPI:
    """
    Build the application with its services and caches.

    Args:
        settings: Runtime settings; read from the environment when omitted
        client: Upstream client; built from settings when omitted
    """
    settings = settings or Settings.from_env()
    client = client or ArkClient(settings)

    details_cache = ExpiringLRUCache(
        settings.cache_max_entries, settings.cache_ttl_seconds, name="garment-details"
    )
    patches_cache = ExpiringLRUCache(
        settings.cache_max_entries, settings.cache_ttl_seconds, name="auto-patches"
    )
    analyzer = AnalyzerService(client, cache=details_cache)
    tryon = TryOnService(settings, client, analyzer, patches_cache=patches_cache)
    janitor = CacheJanitor([details_cache, patches_cache])

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        janitor.start()
        logger.info("Try-On Studio started")
        yield
        await janitor.stop()

    app = FastAPI(title="Try-On Studio", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.client = client
    app.state.analyzer = analyzer
    app.state.tryon = tryon
    app.state.janitor = janitor

    @app.exception_handler(TryOnStudioError)
    async def handle_studio_error(request: Request, exc: TryOnStudioError) -> JSONResponse:
        logger.error(f"{request.url.path} failed ({exc.status_code}): {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = _validation_message(exc)
        logger.warning(f"{request.url.path} rejected: {message}")
        return JSONResponse(status_code=400, content={"error": message, "status": 400})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": GENERIC_FAILURE_MESSAGE, "status": 500})

    @app.get("/health")
    @app.get("/api/health")
    async def health() -> dict:
        return {"ok": True}

    @app.post("/api/chat")
    async def chat(body: ChatRequest) -> dict:
        """Forward a stylist conversation to the chat model."""
        messages = [{"role": message.role, "content": message.content} for message in body.messages]
        if body.system:
            messages.insert(0, {"role": "system", "content": body.system})

        data = await asyncio.to_thread(
            client.chat_completion, messages, temperature=body.temperature
        )
        return {"text": extract_message_text(data), "raw": data}

    @app.post("/api/image")
    async def generate_image(body: GenerateImageRequest) -> dict:
        """Generate a try-on image from wardrobe, body and face references."""
        result = await tryon.generate(body)
        return {"image": result.image, "metadata": result.metadata}

    @app.post("/api/analyze")
    async def analyze(body: AnalyzeRequest) -> dict:
        """Classify one wardrobe photo. Always answers 200, with placeholders on failure."""
        image = ensure_data_url(body.image_base64)
        try:
            image = await asyncio.to_thread(normalize_image, image)
        except ImageNormalizationError as e:
            if is_legacy_format(e.mime or mime_of(image)):
                logger.warning(f"Skipping analysis of undecodable {describe_image(image)}: {e}")
                return {**ClothingSummary().model_dump(), "error": e.message}
            logger.warning(f"Normalizing {describe_image(image)} failed, using original: {e}")

        result = await asyncio.to_thread(analyzer.classify_garment, image)
        response = result.value.model_dump()
        if result.recovered:
            response["error"] = result.error
        return response

    return app


def main():
    """Main entry point."""
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)

    missing = settings.missing("api_key", "base_url", "image_model", "chat_model")
    if missing:
        logger.warning(f"{', '.join(missing)} not set. Requests needing them will fail.")

    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
