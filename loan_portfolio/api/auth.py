"""
Authentication and service wiring dependencies
"""

from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..audit import AuditTrail
from ..clock import Clock, SystemClock
from ..config import LoanPortfolioConfig, get_config
from ..customers import CustomerManager
from ..loans import LoanManager
from ..reporting import ReportingEngine
from ..storage import StorageInterface, create_storage
from ..logging_config import get_logger, log_action


logger = get_logger(__name__)

# JWT Security
security = HTTPBearer(auto_error=False)


class PortfolioSystem:
    """Loan portfolio service with all components initialized"""

    def __init__(self, settings: Optional[LoanPortfolioConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 clock: Optional[Clock] = None):
        self.settings = settings or get_config()

        # Initialize storage
        if storage is None:
            storage = create_storage(self.settings.use_sqlite, self.settings.database_path)
        self.storage = storage
        self.clock = clock or SystemClock()

        # Initialize components
        self.audit_trail = AuditTrail(self.storage, self.clock)
        self.customer_manager = CustomerManager(self.storage, self.clock, self.audit_trail)
        self.loan_manager = LoanManager(
            self.storage, self.customer_manager, self.clock, self.audit_trail,
            restore_window_days=self.settings.restore_window_days
        )
        self.reporting_engine = ReportingEngine(
            self.loan_manager, self.customer_manager, self.clock
        )

    def close(self) -> None:
        self.storage.close()


# Global portfolio system instance, created on first request
_portfolio_system: Optional[PortfolioSystem] = None


def get_portfolio_system() -> PortfolioSystem:
    global _portfolio_system
    if _portfolio_system is None:
        _portfolio_system = PortfolioSystem()
    return _portfolio_system


def _settings(request: Request) -> LoanPortfolioConfig:
    return getattr(request.app.state, "settings", None) or get_config()


def create_access_token(user_id: str, settings: Optional[LoanPortfolioConfig] = None) -> str:
    """Issue a signed bearer token for the given user"""
    settings = settings or get_config()
    now = datetime.now(timezone.utc)
    token_payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(hours=settings.jwt_expiry_hours)
    }
    return jwt.encode(token_payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """Dependency that validates the JWT and returns the current user id"""
    settings = _settings(request)
    if not settings.auth_enabled:
        return settings.dev_user_id

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(credentials.credentials, settings.jwt_secret,
                             algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        log_action(logger, "warning", "Rejected invalid token",
                   action="authenticate", method=request.method, path=request.url.path)
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id
