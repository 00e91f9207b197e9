"""
Savings Ledger API

FastAPI application exposing deposits, withdrawals, queries and the
administrative surplus extraction. Caller identity is resolved upstream and
arrives in the ``X-Principal-Id`` header.
"""

from typing import Optional
import uvicorn
from fastapi import FastAPI, APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .asset import AssetInterface, StoredTokenAsset
from .audit import AuditTrail
from .config import SavingsConfig, get_config
from .events import EventDispatcher
from .exceptions import (
    SavingsLedgerError, InvalidAmount, DepositNotFound, AlreadyWithdrawn,
    TransferFailed, Unauthorized, InsufficientSurplus, ReentrantCall
)
from .rewards import RewardPolicy
from .savings import SavingsLedger, DepositView
from .storage import StorageInterface, create_storage


class SavingsSystem:
    """Savings ledger with all collaborators initialized"""

    def __init__(
        self,
        config: Optional[SavingsConfig] = None,
        storage: Optional[StorageInterface] = None,
        asset: Optional[AssetInterface] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.asset = asset or StoredTokenAsset(self.storage, custodian=self.config.custodian_principal)
        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.event_dispatcher = EventDispatcher()
        self.policy = RewardPolicy(self.config.reward_parameters())
        self.ledger = SavingsLedger(
            storage=self.storage,
            asset=self.asset,
            policy=self.policy,
            admin_principal=self.config.admin_principal,
            audit_trail=self.audit_trail,
            event_dispatcher=self.event_dispatcher,
            min_deposit_amount=self.config.min_deposit_amount
        )


_savings_system: Optional[SavingsSystem] = None


def get_savings_system() -> SavingsSystem:
    """Dependency returning the process-wide savings system"""
    global _savings_system
    if _savings_system is None:
        _savings_system = SavingsSystem()
    return _savings_system


def get_principal(x_principal_id: str = Header(..., alias="X-Principal-Id")) -> str:
    """Dependency returning the already-authenticated caller"""
    if not x_principal_id.strip():
        raise HTTPException(status_code=401, detail="Missing principal")
    return x_principal_id


ERROR_STATUS = {
    InvalidAmount: status.HTTP_400_BAD_REQUEST,
    DepositNotFound: status.HTTP_404_NOT_FOUND,
    AlreadyWithdrawn: status.HTTP_409_CONFLICT,
    TransferFailed: status.HTTP_402_PAYMENT_REQUIRED,
    Unauthorized: status.HTTP_403_FORBIDDEN,
    InsufficientSurplus: status.HTTP_409_CONFLICT,
    ReentrantCall: status.HTTP_409_CONFLICT,
}


# Schemas
class AmountRequest(BaseModel):
    amount: int = Field(..., description="Integer token amount")


class MintRequest(BaseModel):
    holder: str
    amount: int = Field(..., gt=0)


def _view_to_dict(view: DepositView) -> dict:
    return {
        "owner": view.owner,
        "index": view.index,
        "amount": view.amount,
        "start_time": view.start_time.isoformat(),
        "state": view.state.value,
        "reward_if_withdrawn_now": view.reward_if_withdrawn_now
    }


deposits_router = APIRouter()
ledger_router = APIRouter()
admin_router = APIRouter()


@deposits_router.post("", status_code=status.HTTP_201_CREATED)
async def create_deposit(
    request: AmountRequest,
    principal: str = Depends(get_principal),
    system: SavingsSystem = Depends(get_savings_system)
):
    """Lock a new deposit"""
    deposit_id = system.ledger.deposit(principal, request.amount)
    return {"owner": deposit_id.owner, "deposit_index": deposit_id.index}


@deposits_router.get("")
async def list_deposits(
    principal: str = Depends(get_principal),
    system: SavingsSystem = Depends(get_savings_system)
):
    """List the caller's deposits"""
    return {"deposits": [_view_to_dict(v) for v in system.ledger.list_deposits(principal)]}


@deposits_router.get("/{deposit_index}")
async def get_deposit(
    deposit_index: int,
    principal: str = Depends(get_principal),
    system: SavingsSystem = Depends(get_savings_system)
):
    """Get one of the caller's deposits"""
    return _view_to_dict(system.ledger.get_deposit(principal, deposit_index))


@deposits_router.post("/{deposit_index}/withdraw")
async def withdraw_deposit(
    deposit_index: int,
    principal: str = Depends(get_principal),
    system: SavingsSystem = Depends(get_savings_system)
):
    """Withdraw one of the caller's deposits"""
    result = system.ledger.withdraw(principal, deposit_index)
    return {
        "deposit_index": deposit_index,
        "principal_paid": result.principal_paid,
        "reward_or_penalty_paid": result.reward_or_penalty_paid,
        "matured": result.matured,
        "payout": result.payout
    }


@ledger_router.post("/reserve")
async def fund_reserve(
    request: AmountRequest,
    principal: str = Depends(get_principal),
    system: SavingsSystem = Depends(get_savings_system)
):
    """Add tokens backing future rewards"""
    return {"funded": system.ledger.fund_reserve(principal, request.amount)}


@ledger_router.get("/totals")
async def get_totals(system: SavingsSystem = Depends(get_savings_system)):
    """Get aggregate ledger totals"""
    return system.ledger.get_totals().to_dict()


@ledger_router.get("/solvency")
async def get_solvency(system: SavingsSystem = Depends(get_savings_system)):
    """Get held balance against current liabilities"""
    return system.ledger.solvency_report()


@admin_router.post("/extract-surplus")
async def extract_surplus(
    principal: str = Depends(get_principal),
    system: SavingsSystem = Depends(get_savings_system)
):
    """Send the balance above liabilities to the administrator"""
    return {"extracted": system.ledger.admin_extract_surplus(principal)}


@admin_router.get("/verify")
async def verify_ledger(
    principal: str = Depends(get_principal),
    system: SavingsSystem = Depends(get_savings_system)
):
    """Check stored totals and the audit chain"""
    if principal != system.config.admin_principal:
        raise Unauthorized(f"{principal} is not allowed to verify the ledger")
    audit = system.audit_trail.verify_integrity() if system.audit_trail else None
    return {"totals": system.ledger.verify_totals(), "audit": audit}


@admin_router.post("/mint")
async def mint_tokens(
    request: MintRequest,
    principal: str = Depends(get_principal),
    system: SavingsSystem = Depends(get_savings_system)
):
    """Credit tokens on the bundled stored asset"""
    if principal != system.config.admin_principal:
        raise Unauthorized(f"{principal} is not allowed to mint")
    if not isinstance(system.asset, StoredTokenAsset):
        raise HTTPException(status_code=400, detail="Minting is only available on the bundled token asset")
    system.asset.mint(request.holder, request.amount)
    return {"holder": request.holder, "balance": system.asset.balance_of(request.holder)}


def create_app(system: Optional[SavingsSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Time-Locked Savings Ledger API",
        description="Time-locked deposits with rewards, penalties and solvency-capped extraction",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    if system is not None:
        app.dependency_overrides[get_savings_system] = lambda: system

    @app.exception_handler(SavingsLedgerError)
    async def ledger_error_handler(request: Request, exc: SavingsLedgerError):
        return JSONResponse(
            status_code=ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
            content={"error": type(exc).__name__, "detail": str(exc)}
        )

    app.include_router(deposits_router, prefix="/deposits", tags=["Deposits"])
    app.include_router(ledger_router, prefix="/ledger", tags=["Ledger"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "timelock_savings_api",
            "version": "1.0.0"
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Time-Locked Savings Ledger API",
            "version": "1.0.0",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "deposits": "/deposits",
                "ledger": "/ledger",
                "admin": "/admin"
            }
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8091, log_level: str = "info") -> None:
    """Run the API with uvicorn"""
    uvicorn.run(create_app(), host=host, port=port, log_level=log_level)
