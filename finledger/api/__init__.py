"""
FinLedger API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..system import LedgerSystem
from ..config import get_config
from ..logging_config import setup_logging
from .error_handlers import register_error_handlers
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .categories import router as categories_router
from .recurring import router as recurring_router


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="FinLedger API",
        description="Personal-finance ledger with recurring transactions",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system or LedgerSystem()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(categories_router, prefix="/categories", tags=["Categories"])
    app.include_router(recurring_router, prefix="/recurring", tags=["Recurring"])

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "finledger_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Run the API server with settings from configuration"""
    settings = get_config()
    setup_logging(level=settings.log_level, log_format=settings.log_format)
    uvicorn.run(
        create_app(LedgerSystem(settings)),
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower()
    )
