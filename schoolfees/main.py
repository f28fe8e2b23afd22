import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from schoolfees.api.v1.ledger_reports.router import router as ledger_reports_router
from schoolfees.api.v1.pricing_configurations.router import router as pricing_configurations_router
from schoolfees.api.v1.student_ledgers.router import router as student_ledgers_router
from schoolfees.core.config import settings


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="School Fees Backend")

    # CORS: allow frontend to call this API
    origins = [o.strip() for o in settings.cors_origins.split(",")] if settings.cors_origins else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(pricing_configurations_router)
    app.include_router(student_ledgers_router)
    app.include_router(ledger_reports_router)

    return app


app = create_app()
