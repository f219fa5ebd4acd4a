import logging
import traceback
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.config import configure_logging, get_settings
from app.routers import (
    admin,
    auth,
    blog,
    chat,
    checkout,
    directory,
    favorites,
    provider_portal,
    registrations,
    seo,
)
from app.services.ai_assistant import ai_assistant
from app.services.payment_gateway import payment_gateway

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings)

LEGAL_SECTIONS = [
    {
        "title": "Aviso de privacidad",
        "body": (
            "Charlitron Eventos 360 solo usa los datos de contacto que los proveedores publican voluntariamente "
            "para mostrarlos en el directorio. Las preguntas al asistente virtual se registran de forma anónima "
            "para mejorar el servicio."
        ),
    },
    {
        "title": "Términos de uso",
        "body": (
            "El directorio es gratuito para los usuarios. Cada proveedor es responsable de sus servicios, precios "
            "y horarios. Charlitron Eventos 360 no interviene en los acuerdos entre clientes y proveedores."
        ),
    },
    {
        "title": "Suscripciones de proveedores",
        "body": (
            "Los planes mensuales y anuales se cobran por adelantado y se renuevan automáticamente hasta que el "
            "proveedor los cancele."
        ),
    },
]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    status = settings.configuration_status()
    if status["missing"]:
        logger.warning("Missing required configuration: %s", ", ".join(status["missing"]))
    logger.info(
        "startup llm_configured=%s payments_configured=%s",
        ai_assistant.llm_available,
        payment_gateway.enabled,
    )
    yield


app = FastAPI(title="Charlitron Eventos 360 API", version="0.1.0", lifespan=lifespan)

allow_any_origin = len(settings.cors_origins) == 1 and settings.cors_origins[0] == "*"

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    # Browsers reject wildcard CORS with credentials enabled.
    allow_credentials=not allow_any_origin,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(directory.router)
app.include_router(registrations.router)
app.include_router(provider_portal.router)
app.include_router(favorites.router)
app.include_router(blog.router)
app.include_router(chat.router)
app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(checkout.router)
app.include_router(seo.router)

storage_dir = Path(settings.storage_dir)
storage_dir.mkdir(parents=True, exist_ok=True)
if settings.public_storage_url.startswith("/"):
    app.mount(settings.public_storage_url, StaticFiles(directory=storage_dir), name="storage")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = {"error": "Internal server error", "path": request.url.path}
    if settings.debug:
        body["detail"] = str(exc)
        body["traceback"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=500, content=body)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    status = settings.configuration_status()
    llm_configured = bool(ai_assistant.llm_available)
    return {
        "status": "ready" if status["configured"] else "not_configured",
        "missing": status["missing"],
        "llm_configured": llm_configured,
        "llm_mode": "openai" if llm_configured else "fallback",
        "payments_configured": status["payments_configured"],
    }


@app.get("/config/public")
def public_config():
    status = settings.configuration_status()
    return {
        "site_url": settings.site_url,
        "social_links": settings.social_links(),
        "configured": status["configured"],
        "payments_configured": status["payments_configured"],
    }


@app.get("/legal")
def legal():
    return {"title": "Información legal", "sections": LEGAL_SECTIONS}
