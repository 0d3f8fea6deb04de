"""Error handling utilities for user-friendly error messages."""

from __future__ import annotations

from typing import Optional

import httpx
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError


def format_powershell_error(exc: Exception, operation: str = "PowerShell command") -> str:
    """Convert PowerShell and compliance exceptions to short, actionable messages.

    Args:
        exc: The exception that occurred
        operation: Description of the operation that failed

    Returns:
        User-friendly error message
    """
    exc_type = type(exc).__name__
    exc_str = str(exc)
    lowered = exc_str.lower()

    if exc_type == "PowerShellNotAvailableError":
        return "PowerShell was not found. Install PowerShell 7 or set M365_ADMIN_POWERSHELL_PATH."
    if "is not recognized as" in lowered or "commandnotfoundexception" in lowered:
        return (
            f"A cmdlet needed for {operation} is not available. "
            "Install the ExchangeOnlineManagement module (Install-Module ExchangeOnlineManagement)."
        )
    if "couldn't find" in lowered or "could not find" in lowered or "managementobjectnotfound" in lowered:
        return f"The object requested during {operation} does not exist: {exc_str[:200]}"
    if "access denied" in lowered or "unauthorized" in lowered or "insufficient" in lowered:
        return (
            f"Access denied during {operation}. The account needs the Compliance Search and "
            "Search And Purge roles."
        )
    if "aadsts" in lowered:
        return f"Sign-in failed during {operation}: {exc_str[:200]}"
    if "throttl" in lowered or "too many" in lowered:
        return f"The service is throttling requests during {operation}. Wait a few minutes and retry."
    if exc_type == "ComplianceJobFailedError":
        return f"The compliance job failed: {exc_str[:200]}"
    return f"{operation} failed: {exc_str[:200]}"


def format_graph_error(exc: Exception, operation: str = "Graph request") -> str:
    """Convert Microsoft Graph / HTTP exceptions to user-friendly messages."""
    status_code = getattr(exc, "status_code", None)
    if status_code is None and isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code

    if type(exc).__name__ == "GraphAuthError":
        return f"Authentication with Microsoft Graph failed: {str(exc)[:200]}"
    if status_code == 401:
        return "Microsoft Graph rejected the token. Check the tenant, client id and secret."
    if status_code == 403:
        return (
            f"Permission denied during {operation}. Grant the app the required Graph permissions "
            "(DeviceManagementApps.ReadWrite.All, GroupMember.Read.All) and admin consent."
        )
    if status_code == 404:
        return f"The resource requested during {operation} was not found."
    if status_code == 429:
        return f"Microsoft Graph is throttling requests during {operation}. Retry later."
    if isinstance(exc, httpx.TimeoutException):
        return f"Microsoft Graph did not respond in time during {operation}."
    if isinstance(exc, httpx.TransportError):
        return f"Could not reach Microsoft Graph during {operation}. Check network connectivity."
    return f"{operation} failed: {str(exc)[:200]}"


def format_database_error(exc: Exception, operation: str = "database operation") -> str:
    """Convert database exceptions to user-friendly error messages."""
    exc_str = str(exc)

    if isinstance(exc, IntegrityError):
        return f"Data integrity error during {operation}. The ledger entry could not be saved."
    if isinstance(exc, OperationalError):
        lowered = exc_str.lower()
        if "database is locked" in lowered:
            return "The ledger database is locked by another process. Please wait and try again."
        if "no such table" in lowered:
            return "Ledger table not found. The database schema may need to be initialized."
        return f"Database operation failed: {exc_str[:200]}"
    if isinstance(exc, SQLAlchemyError):
        return f"Database error during {operation}: {exc_str[:200]}"
    if isinstance(exc, PermissionError):
        return "Permission denied accessing the ledger database. Check file permissions."
    return f"An error occurred during {operation}: {exc_str[:200]}"


def format_connection_error(exc: Exception, database_url: Optional[str] = None) -> str:
    """Format database connection errors."""
    exc_str = str(exc).lower()

    if "unable to open database" in exc_str:
        if database_url and "sqlite" in database_url.lower():
            return "Cannot open the SQLite ledger. Check that the data directory exists and is writable."
        return "Cannot connect to the ledger database. Check connection settings and file permissions."
    if "database is locked" in exc_str:
        return "The ledger database is locked by another process. Please wait and try again."
    return f"Database connection failed: {str(exc)[:200]}"
