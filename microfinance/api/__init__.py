"""
Microfinance Lending API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import LendingSystem
from .audit_logs import router as audit_logs_router
from .branches import router as branches_router
from .customers import router as customers_router
from .loan_types import router as loan_types_router
from .loans import router as loans_router
from .me import router as me_router
from .repayments import router as repayments_router
from .users import router as users_router
from ..config import get_config
from ..errors import ErrorKind, LendingError
from ..logging_config import get_logger, log_action


logger = get_logger("microfinance.api")

ERROR_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_STATE_TRANSITION: 409,
    ErrorKind.TIME_WINDOW_EXPIRED: 403,
}


def create_app(system: Optional[LendingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    app = FastAPI(
        title="Microfinance Lending API",
        description="Loan lifecycle and repayment allocation for microfinance branches",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system or LendingSystem()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in config.cors_origin.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LendingError)
    async def lending_error_handler(request: Request, exc: LendingError):
        status_code = ERROR_STATUS_CODES.get(exc.kind, 400)
        log_action(logger, "info", f"{request.method} {request.url.path} failed: {exc.message}",
                   action="request_failed", extra={"kind": exc.kind.value, "status": status_code})
        return JSONResponse(status_code=status_code, content={"success": False, **exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0]["msg"] if errors else "Invalid request"
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": ErrorKind.VALIDATION_FAILED.value,
                "message": message,
                "details": [{"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]} for e in errors],
            }
        )

    # Include routers
    app.include_router(me_router, prefix="/auth", tags=["Auth"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(repayments_router, prefix="/repayments", tags=["Repayments"])
    app.include_router(loan_types_router, prefix="/loan-types", tags=["Loan Types"])
    app.include_router(branches_router, prefix="/branches", tags=["Branches"])
    app.include_router(customers_router, prefix="/customers", tags=["Customers"])
    app.include_router(users_router, prefix="/users", tags=["Users"])
    app.include_router(audit_logs_router, prefix="/audit-logs", tags=["Audit Logs"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "microfinance_api",
            "version": "1.0.0"
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Microfinance Lending API",
            "version": "1.0.0",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": "/auth/me",
                "loans": "/loans",
                "repayments": "/repayments",
                "loan-types": "/loan-types",
                "branches": "/branches",
                "customers": "/customers",
                "users": "/users",
                "audit-logs": "/audit-logs",
            }
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 5000, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "microfinance.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
