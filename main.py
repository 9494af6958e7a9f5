from fastapi import FastAPI

from modasim.api.router import router
from modasim.config import settings
from modasim.database.engine import init_engine, init_schema_check


app = FastAPI(
    title="modasim (day tick engine)",
    version="1.0.0",
    # Reverse-proxy aware Swagger/OpenAPI paths:
    root_path=settings.API_ROOT_PATH,
    docs_url="/docs",
    redoc_url=None,
    openapi_url="/openapi.json",
    swagger_ui_oauth2_redirect_url="/docs/oauth2-redirect",
)

app.include_router(router)


@app.on_event("startup")
async def _startup() -> None:
    init_engine()
    init_schema_check()
