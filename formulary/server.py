from __future__ import annotations

from fastapi import FastAPI

from .routers import router as api_router


def create_app() -> FastAPI:
    app = FastAPI(title="Formulary Workbench", version="1.0.0")
    app.include_router(api_router)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
