"""
Loan Portfolio API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import LoanPortfolioConfig, get_config
from .auth import PortfolioSystem, get_portfolio_system
from .errors import register_exception_handlers
from .customers import router as customers_router
from .loans import router as loans_router
from .reports import router as reports_router


def create_app(system: Optional[PortfolioSystem] = None,
               settings: Optional[LoanPortfolioConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Pre-built service components; the shared instance is used when omitted
        settings: Configuration; defaults to the system's or the global configuration
    """
    app = FastAPI(
        title="Loan Portfolio API",
        description="Track loans, interest installments and repayments for a private lender",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.settings = settings or (system.settings if system else get_config())

    if system is not None:
        app.dependency_overrides[get_portfolio_system] = lambda: system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(customers_router, prefix="/customers", tags=["Customers"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(reports_router, prefix="/reports", tags=["Reports"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_portfolio_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Loan Portfolio API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "customers": "/customers",
                "loans": "/loans",
                "trash": "/loans/trash",
                "reports": "/reports",
            }
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "loan_portfolio.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
