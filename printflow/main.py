from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from sqlalchemy import text

from printflow.config import settings
from printflow.db import SessionLocal
from printflow.errors import install_error_handlers
from printflow.logging_config import configure_logging
from printflow.routers import (
    companies,
    invoices,
    jobs,
    paper_inventory,
    proofs,
    purchase_orders,
    quotes,
    reconciliation,
    shipments,
    webhooks,
)
from printflow.security.headers import install_security_headers
from printflow.services.provider_factory import build_collaborators


def create_app(*, session_factory=None, collaborators=None) -> FastAPI:
    configure_logging(level=settings.log_level, json_output=settings.log_json)

    app = FastAPI(title='Printflow Back Office')
    app.state.session_factory = session_factory or SessionLocal
    app.state.collaborators = collaborators or build_collaborators(settings)

    install_security_headers(app)
    install_error_handlers(app)

    app.include_router(jobs.router)
    app.include_router(purchase_orders.router)
    app.include_router(webhooks.router)
    app.include_router(invoices.router)
    app.include_router(quotes.router)
    app.include_router(proofs.router)
    app.include_router(shipments.router)
    app.include_router(paper_inventory.router)
    app.include_router(companies.router)
    app.include_router(reconciliation.router)
    app.include_router(reconciliation.revenue_router)

    @app.get('/healthz')
    def healthz():
        with app.state.session_factory() as db:
            db.execute(text('SELECT 1'))
        return {'status': 'ok'}

    @app.get('/robots.txt', response_class=PlainTextResponse)
    def robots_txt() -> str:
        return 'User-agent: *\nDisallow: /\n'

    return app


app = create_app()
