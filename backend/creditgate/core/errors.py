from __future__ import annotations

import enum
from typing import Any

from fastapi import HTTPException
from fastapi.responses import JSONResponse


class CreditErrorCode(str, enum.Enum):
    USER_ORGANIZATION_REQUIRED = "USER_ORGANIZATION_REQUIRED"
    ORGANIZATION_CREDIT_INSUFFICIENT = "ORGANIZATION_CREDIT_INSUFFICIENT"
    MEMBER_QUOTA_EXCEEDED = "MEMBER_QUOTA_EXCEEDED"


class ModelCreditError(Exception):
    def __init__(self, code: CreditErrorCode | str, message: str) -> None:
        super().__init__(message)
        self.code = CreditErrorCode(code)
        self.message = message

    def __repr__(self) -> str:
        return f"ModelCreditError(code={self.code.value!r}, message={self.message!r})"


class ChatErrorType:
    ORGANIZATION_CREDIT_INSUFFICIENT = "OrganizationCreditInsufficient"
    MEMBER_QUOTA_EXCEEDED = "MemberQuotaExceeded"
    USER_ORGANIZATION_REQUIRED = "UserOrganizationRequired"
    INVALID_PROVIDER_API_KEY = "InvalidProviderAPIKey"
    PROVIDER_BIZ_ERROR = "ProviderBizError"
    INTERNAL_SERVER_ERROR = "InternalServerError"


_ERROR_STATUS: dict[str, int] = {
    ChatErrorType.ORGANIZATION_CREDIT_INSUFFICIENT: 402,
    ChatErrorType.MEMBER_QUOTA_EXCEEDED: 429,
    ChatErrorType.USER_ORGANIZATION_REQUIRED: 403,
    ChatErrorType.INVALID_PROVIDER_API_KEY: 401,
    ChatErrorType.PROVIDER_BIZ_ERROR: 400,
    ChatErrorType.INTERNAL_SERVER_ERROR: 500,
}


def map_credit_error_to_chat_error(error: ModelCreditError) -> str:
    if error.code == CreditErrorCode.ORGANIZATION_CREDIT_INSUFFICIENT:
        return ChatErrorType.ORGANIZATION_CREDIT_INSUFFICIENT
    if error.code == CreditErrorCode.MEMBER_QUOTA_EXCEEDED:
        return ChatErrorType.MEMBER_QUOTA_EXCEEDED
    if error.code == CreditErrorCode.USER_ORGANIZATION_REQUIRED:
        return ChatErrorType.USER_ORGANIZATION_REQUIRED
    return ChatErrorType.INTERNAL_SERVER_ERROR


def create_error_response(error_type: str, body: dict[str, Any] | None = None) -> JSONResponse:
    status_code = _ERROR_STATUS.get(error_type, 500)
    return JSONResponse(status_code=status_code, content={"body": body or {}, "errorType": error_type})


def create_credit_error_response(error: ModelCreditError, provider: str) -> JSONResponse:
    return create_error_response(
        map_credit_error_to_chat_error(error),
        {"error": {"code": error.code.value, "message": error.message}, "provider": provider},
    )


class BusinessErrorType(str, enum.Enum):
    ADMIN_MUST_BELONG_TO_ORGANIZATION = "ADMIN_MUST_BELONG_TO_ORGANIZATION"
    CANNOT_MANAGE_OTHER_ORGANIZATIONS = "CANNOT_MANAGE_OTHER_ORGANIZATIONS"
    CANNOT_MOVE_STUDENTS_OUTSIDE_ORGANIZATION = "CANNOT_MOVE_STUDENTS_OUTSIDE_ORGANIZATION"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    MANAGEMENT_ORGANIZATION_ALREADY_EXISTS = "MANAGEMENT_ORGANIZATION_ALREADY_EXISTS"
    ONLY_ROOT_CAN_ASSIGN_ROOT_ROLE = "ONLY_ROOT_CAN_ASSIGN_ROOT_ROLE"
    ONLY_STUDENTS_CAN_BE_MANAGED = "ONLY_STUDENTS_CAN_BE_MANAGED"
    ORGANIZATION_HAS_USERS = "ORGANIZATION_HAS_USERS"
    ORGANIZATION_MANAGEMENT_UNDELETABLE = "ORGANIZATION_MANAGEMENT_UNDELETABLE"
    ORGANIZATION_MAX_USERS_REACHED = "ORGANIZATION_MAX_USERS_REACHED"
    ORGANIZATION_NAME_REQUIRED = "ORGANIZATION_NAME_REQUIRED"
    ORGANIZATION_NAME_TAKEN = "ORGANIZATION_NAME_TAKEN"
    ORGANIZATION_TYPE_IMMUTABLE = "ORGANIZATION_TYPE_IMMUTABLE"
    ORGANIZATION_TYPE_UNSUPPORTED = "ORGANIZATION_TYPE_UNSUPPORTED"
    USER_NOT_IN_ORGANIZATION = "USER_NOT_IN_ORGANIZATION"


BUSINESS_ERROR_MESSAGES: dict[BusinessErrorType, str] = {
    BusinessErrorType.ADMIN_MUST_BELONG_TO_ORGANIZATION: "Admin must belong to an organization",
    BusinessErrorType.CANNOT_MANAGE_OTHER_ORGANIZATIONS: "Cannot manage other organizations",
    BusinessErrorType.CANNOT_MOVE_STUDENTS_OUTSIDE_ORGANIZATION: "Cannot move users outside your organization",
    BusinessErrorType.INSUFFICIENT_PERMISSIONS: "Insufficient permissions",
    BusinessErrorType.MANAGEMENT_ORGANIZATION_ALREADY_EXISTS: "Management organization already exists",
    BusinessErrorType.ONLY_ROOT_CAN_ASSIGN_ROOT_ROLE: "Only root user can assign or revoke the root role",
    BusinessErrorType.ONLY_STUDENTS_CAN_BE_MANAGED: "Admins can only manage regular users",
    BusinessErrorType.ORGANIZATION_HAS_USERS: "Organization still has users and cannot be deleted",
    BusinessErrorType.ORGANIZATION_MANAGEMENT_UNDELETABLE: "Management organization cannot be deleted",
    BusinessErrorType.ORGANIZATION_MAX_USERS_REACHED: "Organization has reached its maximum number of users",
    BusinessErrorType.ORGANIZATION_NAME_REQUIRED: "Organization name is required",
    BusinessErrorType.ORGANIZATION_NAME_TAKEN: "Organization name is already in use",
    BusinessErrorType.ORGANIZATION_TYPE_IMMUTABLE: "Management organization type cannot be changed",
    BusinessErrorType.ORGANIZATION_TYPE_UNSUPPORTED: "Unsupported organization type",
    BusinessErrorType.USER_NOT_IN_ORGANIZATION: "User does not belong to this organization",
}


class BusinessError(HTTPException):
    def __init__(self, error_type: BusinessErrorType, status_code: int, message: str | None = None) -> None:
        super().__init__(status_code=status_code, detail=message or BUSINESS_ERROR_MESSAGES[error_type])
        self.error_type = error_type


def create_business_error(error_type: BusinessErrorType, custom_message: str | None = None) -> BusinessError:
    return BusinessError(error_type, 400, custom_message)


def create_permission_error(custom_message: str | None = None) -> BusinessError:
    return BusinessError(BusinessErrorType.INSUFFICIENT_PERMISSIONS, 403, custom_message)


def create_not_found_error(resource_name: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{resource_name} not found")


def create_internal_error(custom_message: str | None = None) -> HTTPException:
    return HTTPException(status_code=500, detail=custom_message or "Operation failed, please try again later")
