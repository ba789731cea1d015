import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from creditgate.api.endpoints import account, generation, organizations, quota, roles
from creditgate.core.database import Base, SessionLocal, engine
from creditgate.core.errors import ChatErrorType, ModelCreditError, create_error_response, map_credit_error_to_chat_error
from creditgate.core.settings import settings
from creditgate.models import ai_model, async_task, model_credit, organization, rbac, user  # noqa: F401
from creditgate.services.roles import seed_system_roles

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("creditgate")

app = FastAPI(title="Creditgate API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def startup() -> None:
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)

    if settings.seed_system_roles:
        db = SessionLocal()
        try:
            seed_system_roles(db)
        finally:
            db.close()
    logger.info("startup.ready environment=%s", settings.environment)


@app.exception_handler(ModelCreditError)
async def model_credit_error_handler(request: Request, exc: ModelCreditError):
    return create_error_response(
        map_credit_error_to_chat_error(exc),
        {"error": {"code": exc.code.value, "message": exc.message}},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("request.unhandled method=%s path=%s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "errorType": ChatErrorType.INTERNAL_SERVER_ERROR,
            "body": {"error": {"message": "Operation failed, please try again later"}},
        },
    )


# API Routes
app.include_router(account.router, prefix="/api", tags=["account"])
app.include_router(quota.router, prefix="/api/quota", tags=["quota"])
app.include_router(roles.router, prefix="/api/roles", tags=["roles"])
app.include_router(organizations.router, prefix="/api/organizations", tags=["organizations"])
app.include_router(generation.router, prefix="/api/webapi", tags=["generation"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
