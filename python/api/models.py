"""
Pydantic request/response schemas for the Credit Ledger API

Transforms ledger records (ledger/records.py) and summaries
(ledger/aggregation.py) into Pydantic models for API validation.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from database.models import CreditAction, OfficerStatus


# ============================================
# OFFICERS
# ============================================

class OfficerCreateRequest(BaseModel):
    """Request schema for officer registration."""
    name: str = Field(..., min_length=2, max_length=200, description="Officer display name")
    mobile: str = Field(..., min_length=5, max_length=30, description="Mobile number")
    telegram_id: Optional[str] = Field(default=None, max_length=100)
    whatsapp_id: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=200)
    department: Optional[str] = Field(default=None, max_length=200)
    rank: Optional[str] = Field(default=None, max_length=100)
    badge_number: Optional[str] = Field(default=None, max_length=50)
    initial_credits: int = Field(
        default=0,
        ge=0,
        description="Credits issued with a Renewal right after registration"
    )
    payment_mode: Optional[str] = Field(default=None, max_length=50)
    processed_by: Optional[str] = Field(default=None, max_length=100)

    @field_validator('mobile')
    @classmethod
    def validate_mobile(cls, v: str) -> str:
        """Mobile numbers may contain digits, spaces, '+' and '-' only."""
        import re
        if not re.match(r'^\+?[\d\s-]+$', v):
            raise ValueError("Mobile number may contain digits, spaces, '+' and '-' only")
        return v.strip()


class OfficerStatusRequest(BaseModel):
    """Request schema for a status change."""
    status: OfficerStatus = Field(..., description="Active, Suspended or Inactive")


class OfficerResponse(BaseModel):
    """Officer snapshot."""
    id: UUID
    name: str
    mobile: str
    status: OfficerStatus
    credits_remaining: int = Field(..., ge=0)
    total_credits: int = Field(..., ge=0)
    total_queries: int = Field(..., ge=0)
    version: int
    registered_on: datetime
    last_active: Optional[datetime] = None
    telegram_id: Optional[str] = None
    whatsapp_id: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None
    rank: Optional[str] = None
    badge_number: Optional[str] = None
    pro_access_enabled: bool = True
    rate_limit_per_hour: int = 100

    model_config = {"from_attributes": True}


class OfficerListResponse(BaseModel):
    officers: List[OfficerResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)


class OfficerStatsResponse(BaseModel):
    """Officer counts by status."""
    total: int = Field(..., ge=0)
    active: int = Field(..., ge=0)
    suspended: int = Field(..., ge=0)
    inactive: int = Field(..., ge=0)


class BalanceResponse(BaseModel):
    officer_id: UUID
    balance: int = Field(..., ge=0)


# ============================================
# TRANSACTIONS
# ============================================

class TransactionRequest(BaseModel):
    """Request schema for a credit transaction.

    amount is strict: strings and booleans are rejected rather than coerced.
    Adjustment takes a signed amount; every other action a positive one.
    """
    action: str = Field(..., max_length=20, description="Renewal, Top-up, Deduction, Refund or Adjustment")
    amount: int = Field(..., strict=True, description="Credits; signed for Adjustment")
    payment_mode: Optional[str] = Field(default=None, max_length=50)
    payment_reference: Optional[str] = Field(default=None, max_length=100)
    remarks: Optional[str] = Field(default=None, max_length=1000)
    processed_by: Optional[str] = Field(default=None, max_length=100)


class TransactionResponse(BaseModel):
    """One ledger transaction."""
    id: UUID
    officer_id: UUID
    sequence: int = Field(..., ge=1)
    action: CreditAction
    credits: int
    previous_balance: int
    new_balance: int
    created_at: datetime
    payment_mode: Optional[str] = None
    payment_reference: Optional[str] = None
    remarks: Optional[str] = None
    processed_by: Optional[str] = None
    query_id: Optional[UUID] = None
    officer_name: Optional[str] = None

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse] = Field(default_factory=list)
    count: int = Field(..., ge=0)


class SettlementResponse(BaseModel):
    """Result of settling a query; transaction is null for free queries."""
    query_id: UUID
    charged: bool
    transaction: Optional[TransactionResponse] = None


# ============================================
# SUMMARIES
# ============================================

class CreditSummaryResponse(BaseModel):
    """Credit dashboard totals. utilization_rate is absent when nothing was issued."""
    total_issued: int = Field(..., ge=0)
    total_used: int = Field(..., ge=0)
    revenue: float = Field(..., ge=0)
    transaction_count: int = Field(..., ge=0)
    utilization_rate: Optional[float] = None


class OfficerQueryStats(BaseModel):
    total: int = Field(..., ge=0)
    success: int = Field(..., ge=0)
    credits: int = Field(..., ge=0)


class QuerySummaryResponse(BaseModel):
    """Query dashboard totals. success_rate is absent when there are no queries."""
    total_queries: int = Field(..., ge=0)
    total_credits_used: int = Field(..., ge=0)
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_officer: Dict[str, OfficerQueryStats] = Field(default_factory=dict)
    success_rate: Optional[float] = None


# ============================================
# HEALTH & ERRORS
# ============================================

class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: Dict[str, Any] = Field(default_factory=dict, description="Database health details")
    officers: int = Field(default=0, ge=0, description="Registered officers")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    metrics: Dict[str, Any] = Field(default_factory=dict, description="Operation timings")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    retryable: Optional[bool] = Field(default=None, description="Whether the request may be retried")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
