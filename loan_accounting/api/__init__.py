"""
Loan Accounting API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import ComputationError, LoanAccountingError, NotFoundError, StateConflictError, ValidationError
from ..logging_config import get_logger, log_action
from .loans import router as loans_router
from .repayments import router as repayments_router
from .schedules import router as schedules_router


logger = get_logger("loan_accounting.api")

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    StateConflictError: 409,
    ComputationError: 500,
}


async def handle_loan_accounting_error(request: Request, exc: LoanAccountingError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        500
    )
    if status_code >= 500:
        log_action(logger, "error", exc.message, action="request_failed", resource=request.url.path)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "type": type(exc).__name__, "details": exc.details}
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Loan Accounting API",
        description="Loan repayment accounting: schedules, overdue tracking and balance derivation",
        version=__version__
    )
    
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    app.add_exception_handler(LoanAccountingError, handle_loan_accounting_error)
    
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(repayments_router, prefix="/loans", tags=["Repayments"])
    app.include_router(schedules_router, prefix="/loans", tags=["Schedules"])
    
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_accounting_api",
            "version": __version__
        }
    
    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    import uvicorn
    
    uvicorn.run(
        "loan_accounting.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
