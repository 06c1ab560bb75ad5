"""
Custom Exception Classes for the Recruitment Agent
"""
import asyncio
import functools
import inspect
import time
from random import uniform
from typing import Dict, Any, List

from fastapi import HTTPException


class RecruitAgentError(Exception):
    """Base exception for the recruitment agent"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None,
        cause: Exception = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/response"""
        result = {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }
        if self.cause:
            result["cause"] = str(self.cause)
        return result


class ValidationError(RecruitAgentError):
    """Raised when request data validation fails"""

    def __init__(self, message: str, field: str = None, value: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if field:
            details['field'] = field
        if value is not None:
            details['invalid_value'] = str(value)
        super().__init__(message, error_code="VALIDATION_ERROR", details=details, **kwargs)


class DatabaseError(RecruitAgentError):
    """Raised when chat history storage fails"""

    def __init__(self, message: str, operation: str = None, collection: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if operation:
            details['operation'] = operation
        if collection:
            details['collection'] = collection
        super().__init__(message, error_code="DATABASE_ERROR", details=details, **kwargs)


class StorageError(RecruitAgentError):
    """Raised when a local JSON log cannot be read or written"""

    def __init__(self, message: str, path: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if path:
            details['path'] = path
        super().__init__(message, error_code="STORAGE_ERROR", details=details, **kwargs)


class ModelError(RecruitAgentError):
    """Raised when an LLM call fails or returns something unusable"""

    def __init__(self, message: str, model_name: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if model_name:
            details['model_name'] = model_name
        super().__init__(message, error_code="MODEL_ERROR", details=details, **kwargs)


class RateLimitError(RecruitAgentError):
    """Raised when the LLM provider reports quota exhaustion"""

    def __init__(self, message: str, limit: int = None, window: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if limit:
            details['limit'] = limit
        if window:
            details['window'] = window
        super().__init__(message, error_code="RATE_LIMIT_ERROR", details=details, **kwargs)


class ConfigurationError(RecruitAgentError):
    """Raised when configuration is invalid or missing"""

    def __init__(self, message: str, config_key: str = None, config_value: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if config_key:
            details['config_key'] = config_key
        if config_value is not None:
            details['config_value'] = str(config_value)
        super().__init__(message, error_code="CONFIGURATION_ERROR", details=details, **kwargs)


class ExternalServiceError(RecruitAgentError):
    """Raised when the directory API or the messaging provider fails"""

    def __init__(self, message: str, service_name: str = None, status_code: int = None, **kwargs):
        details = kwargs.pop('details', {})
        if service_name:
            details['service_name'] = service_name
        if status_code:
            details['status_code'] = status_code
        super().__init__(message, error_code="EXTERNAL_SERVICE_ERROR", details=details, **kwargs)


# Routing errors. error_code values are the ones surfaced in TaskResult.error_code

class RoutingError(RecruitAgentError):
    """Base for errors raised while resolving an intent to concrete targets"""


class CandidateNotFoundError(RoutingError):
    def __init__(self, name: str, **kwargs):
        super().__init__(
            f"Candidate '{name}' not found",
            error_code="candidate_not_found",
            details={"candidate_name": name},
            **kwargs
        )
        self.name = name


class AmbiguousCandidateError(RoutingError):
    def __init__(self, name: str, matches: List[str], **kwargs):
        super().__init__(
            f"Multiple candidates match '{name}': {', '.join(matches)}",
            error_code="ambiguous_candidate",
            details={"candidate_name": name, "matches": matches},
            **kwargs
        )
        self.name = name
        self.matches = matches


class MissingPhoneError(RoutingError):
    def __init__(self, name: str, **kwargs):
        super().__init__(
            f"No valid phone number for '{name}'",
            error_code="missing_phone",
            details={"name": name},
            **kwargs
        )
        self.name = name


class SafetyBlockedError(RoutingError):
    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="safety_blocked", **kwargs)


class NoDataError(RoutingError):
    def __init__(self, message: str = "No candidate data available", **kwargs):
        super().__init__(message, error_code="no_data", **kwargs)


def map_to_http_exception(exc: RecruitAgentError) -> HTTPException:
    """Map custom exceptions to HTTP exceptions"""

    status_code_mapping = {
        ValidationError: 400,
        CandidateNotFoundError: 404,
        AmbiguousCandidateError: 409,
        MissingPhoneError: 422,
        SafetyBlockedError: 403,
        NoDataError: 404,
        ConfigurationError: 500,
        DatabaseError: 500,
        StorageError: 500,
        ModelError: 502,
        ExternalServiceError: 502,
        RateLimitError: 429
    }

    status_code = status_code_mapping.get(type(exc), 500)

    detail = {
        "error": exc.to_dict(),
        "message": exc.message
    }

    return HTTPException(status_code=status_code, detail=detail)


class ExceptionContext:
    """Context manager that logs failures and wraps foreign exceptions"""

    def __init__(self, operation: str, logger=None, **context):
        self.operation = operation
        self.logger = logger
        self.context = context

    def __enter__(self):
        if self.logger:
            self.logger.debug(f"Starting operation: {self.operation}", extra=self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            if self.logger:
                self.logger.debug(f"Operation completed: {self.operation}", extra=self.context)
            return False

        if self.logger:
            self.logger.error(
                f"Operation failed: {self.operation} - {exc_val}",
                extra={**self.context, "exception_type": exc_type.__name__}
            )

        if isinstance(exc_val, RecruitAgentError):
            return False

        if isinstance(exc_val, (KeyError, ValueError, TypeError)):
            raise ValidationError(
                f"Validation error in {self.operation}: {exc_val}",
                details=dict(self.context),
                cause=exc_val
            ) from exc_val
        if isinstance(exc_val, OSError):
            raise StorageError(
                f"Storage error in {self.operation}: {exc_val}",
                details=dict(self.context),
                cause=exc_val
            ) from exc_val
        if "mongo" in str(exc_val).lower() or "database" in str(exc_val).lower():
            raise DatabaseError(
                f"Database error in {self.operation}: {exc_val}",
                operation=self.operation,
                details=dict(self.context),
                cause=exc_val
            ) from exc_val
        return False


def retry_with_logging(
    max_attempts: int = 3,
    backoff_factor: float = 1.0,
    exceptions: tuple = (Exception,),
    logger=None
):
    """Decorator to retry operations with exponential backoff and logging"""

    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if logger:
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {e}"
                        )
                    if attempt == max_attempts - 1:
                        if logger:
                            logger.error(f"All {max_attempts} attempts failed for {func.__name__}")
                        raise
                    await asyncio.sleep(backoff_factor * (2 ** attempt) + uniform(0, backoff_factor))

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if logger:
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {e}"
                        )
                    if attempt == max_attempts - 1:
                        if logger:
                            logger.error(f"All {max_attempts} attempts failed for {func.__name__}")
                        raise
                    time.sleep(backoff_factor * (2 ** attempt) + uniform(0, backoff_factor))

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
