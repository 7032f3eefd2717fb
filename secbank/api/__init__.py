"""
SecBank API Application Factory
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_config
from .accounts import router as accounts_router
from .audit import router as audit_router
from .auth import router as auth_router
from .customers import router as customers_router
from .deps import BankingSystem, get_banking_system
from .errors import register_exception_handlers
from .roles import router as roles_router
from .users import router as users_router


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Pre-built BankingSystem to serve; the lazily created global
            one is used when omitted
    """
    config = system.config if system is not None else get_config()
    app = FastAPI(
        title="SecBank CBS API",
        description="Core banking administration backend: authentication, RBAC and CASA accounts",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    if system is not None:
        app.dependency_overrides[get_banking_system] = lambda: system

    # Include routers
    prefix = config.api_prefix
    app.include_router(auth_router, prefix=f"{prefix}/auth", tags=["Authentication"])
    app.include_router(accounts_router, prefix=f"{prefix}/accounts", tags=["Accounts"])
    app.include_router(customers_router, prefix=f"{prefix}/customers", tags=["Customers"])
    app.include_router(roles_router, prefix=prefix, tags=["Roles"])
    app.include_router(users_router, prefix=f"{prefix}/users", tags=["Users"])
    app.include_router(audit_router, prefix=f"{prefix}/audit-logs", tags=["Audit"])

    # Health check endpoint
    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "secbank_api",
            "version": __version__
        }

    return app
