from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from research_pipeline.application import get_recovery_watchdog
from research_pipeline.config import load_settings
from research_pipeline.core.logging import configure_logging
from research_pipeline.infrastructure import HttpWorkflowEngine, NoOpWorkflowEngine, configure_workflow_engine
from research_pipeline.routes import research_jobs


def create_app() -> FastAPI:
    settings = load_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Competitor Research Jobs API", version="0.1.0")
    app.state.settings = settings

    if settings.engine_url:
        engine = HttpWorkflowEngine(
            settings.engine_url,
            token=settings.engine_token,
            timeout=settings.engine_timeout,
        )
        configure_workflow_engine(engine)
        logger.info("Workflow engine configured at {}", settings.engine_url)
    else:
        configure_workflow_engine(NoOpWorkflowEngine())

    get_recovery_watchdog().configure(
        thresholds=settings.thresholds,
        max_retries=settings.max_recovery_retries,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(research_jobs.workspace_router, prefix="/api")
    app.include_router(research_jobs.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Competitor Research Jobs API",
                "docs": "/docs",
                "poll": "/api/research-jobs/{job_id}",
            }
        )

    return app


app = create_app()
