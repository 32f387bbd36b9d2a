"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from sqlalchemy.orm import sessionmaker
from statement_ledger.infrastructure.clients.exchange_rates import BankOfIsraelClient
from statement_ledger.infrastructure.clients.jobs import JobSubmitter, WebhookJobClient
from statement_ledger.infrastructure.database.session import SessionLocal


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_session_factory() -> sessionmaker:
    """Session factory for background batch processing, which outlives the request session"""
    return SessionLocal


def get_job_submitter() -> JobSubmitter:
    """Provide background job webhook client instance"""
    return WebhookJobClient()


def get_exchange_rate_client() -> BankOfIsraelClient:
    """Provide Bank of Israel API client instance"""
    return BankOfIsraelClient()
