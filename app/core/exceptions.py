"""
Custom Exception Hierarchy

Structured exceptions shared by the API layer, the conversation engine and the
fleet services. The API layer turns any AppException into a JSON error body.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"

    # Fleet errors (2xxx)
    MOTORCYCLE_NOT_FOUND = "ERR_2001"
    COURIER_NOT_ASSIGNED = "ERR_2002"
    MILEAGE_DECREASE = "ERR_2003"
    INVALID_MILEAGE = "ERR_2004"
    COURIER_NOT_FOUND = "ERR_2005"
    CLIENT_NOT_FOUND = "ERR_2006"
    LICENSE_PLATE_TAKEN = "ERR_2007"

    # User errors (3xxx)
    USER_NOT_FOUND = "ERR_3001"
    INVALID_PHONE_NUMBER = "ERR_3002"

    # External service errors (5xxx)
    WHATSAPP_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # Conversation errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"
    CONVERSATION_NOT_FOUND = "ERR_6002"
    INVALID_STATE = "ERR_6003"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class AuthorizationException(AppException):
    """Raised when a user tries an action their role does not allow"""

    def __init__(self, message: str, user_id: int | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.UNAUTHORIZED,
            status_code=403,
            details={"user_id": user_id} if user_id is not None else None
        )


class UserNotFoundError(NotFoundException):
    """Raised when user is not found"""

    def __init__(self, identifier: str | int):
        super().__init__("User", identifier, ErrorCode.USER_NOT_FOUND)


class MotorcycleNotFoundError(NotFoundException):
    """Raised when motorcycle is not found"""

    def __init__(self, motorcycle_id: int):
        super().__init__("Motorcycle", motorcycle_id, ErrorCode.MOTORCYCLE_NOT_FOUND)


class CourierNotFoundError(NotFoundException):
    """Raised when courier is not found"""

    def __init__(self, courier_id: int):
        super().__init__("Courier", courier_id, ErrorCode.COURIER_NOT_FOUND)


class ClientNotFoundError(NotFoundException):
    """Raised when client is not found"""

    def __init__(self, client_id: int):
        super().__init__("Client", client_id, ErrorCode.CLIENT_NOT_FOUND)


class LicensePlateTakenError(AppException):
    """מספר רישוי כבר רשום לאופנוע אחר"""

    def __init__(self, license_plate: str):
        super().__init__(
            message="מספר רישיון כבר קיים במערכת",
            error_code=ErrorCode.LICENSE_PLATE_TAKEN,
            status_code=409,
            details={"license_plate": license_plate}
        )


class ConversationNotFoundError(NotFoundException):
    """אין שיחה פעילה (שלא פג תוקפה) למשתמש"""

    def __init__(self, user_id: int):
        super().__init__("Active conversation", user_id, ErrorCode.CONVERSATION_NOT_FOUND)


class MileageDecreaseError(AppException):
    """Raised when a reported odometer value is lower than the stored one"""

    def __init__(self, motorcycle_id: int, current_mileage: int, new_mileage: int):
        super().__init__(
            message="הקילומטראז החדש לא יכול להיות נמוך מהקילומטראז הנוכחי",
            error_code=ErrorCode.MILEAGE_DECREASE,
            status_code=400,
            details={
                "motorcycle_id": motorcycle_id,
                "current_mileage": current_mileage,
                "new_mileage": new_mileage,
            }
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class WhatsAppError(ExternalServiceException):
    """Raised when WhatsApp API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="whatsapp",
            message=f"WhatsApp API error: {message}",
            error_code=ErrorCode.WHATSAPP_ERROR,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "WhatsAppError":
        """
        יצירת WhatsAppError מתוך HTTP response בצורה עקבית.

        Args:
            operation: שם הפעולה (לדוגמה: send)
            response: אובייקט response (למשל httpx.Response)
            message: הודעת שגיאה מותאמת (אם לא סופק - נבנית אוטומטית)
            max_response_chars: אורך מקסימלי לשמירת response_text
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )


class InvalidStateTransitionError(AppException):
    """Raised when state transition is not allowed"""

    def __init__(self, current_state: str, target_state: str, user_id: int | None = None):
        super().__init__(
            message=f"Invalid transition from '{current_state}' to '{target_state}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            status_code=400,
            details={
                "current_state": current_state,
                "target_state": target_state,
                "user_id": user_id
            }
        )


class InvalidStateError(AppException):
    """ערך state שמור שאינו אחד ממצבי השיחה המוכרים"""

    def __init__(self, state: str, user_id: int | None = None):
        super().__init__(
            message=f"Unknown conversation state '{state}'",
            error_code=ErrorCode.INVALID_STATE,
            status_code=500,
            details={"state": state, "user_id": user_id}
        )
