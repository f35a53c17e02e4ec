import logging

from rest_framework.views import exception_handler
from rest_framework.exceptions import (
    APIException, AuthenticationFailed, NotAuthenticated, NotFound, PermissionDenied, ValidationError,
)
from rest_framework.response import Response
from rest_framework import status
from django.core.exceptions import ObjectDoesNotExist
from django.http import Http404

logger = logging.getLogger(__name__)


class ErrorCodes:
    VALIDATION_ERROR = 'VALIDATION_ERROR'
    INVALID_STATE = 'INVALID_STATE'
    PERMISSION_DENIED = 'PERMISSION_DENIED'
    NOT_FOUND = 'NOT_FOUND'
    AUTHENTICATION_FAILED = 'AUTHENTICATION_FAILED'
    INVALID_CREDENTIALS = 'INVALID_CREDENTIALS'
    CONFLICT = 'CONFLICT'
    ALREADY_EXISTS = 'ALREADY_EXISTS'
    UNAUTHORIZED = 'UNAUTHORIZED'
    INVALID_INPUT = 'INVALID_INPUT'
    RATE_LIMIT_EXCEEDED = 'RATE_LIMIT_EXCEEDED'
    ACCOUNT_LOCKED = 'ACCOUNT_LOCKED'
    ACCOUNT_BANNED = 'ACCOUNT_BANNED'
    ACCOUNT_SUSPENDED = 'ACCOUNT_SUSPENDED'
    PAYMENT_REQUIRED = 'PAYMENT_REQUIRED'
    PROVIDER_ERROR = 'PROVIDER_ERROR'
    SERVER_ERROR = 'SERVER_ERROR'


class PaymentRequired(APIException):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = 'A saved payment method is required.'
    default_code = 'payment_required'


class PaymentProviderError(Exception):
    """Raised when a payment provider is missing, unknown or rejects a call."""


def custom_exception_handler(exc, context):
    if isinstance(exc, (ObjectDoesNotExist, Http404)):
        return Response(
            {
                'detail': 'Resource not found.',
                'code': ErrorCodes.NOT_FOUND
            },
            status=status.HTTP_404_NOT_FOUND
        )

    response = exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.error(
            f"Unhandled exception in {view.__class__.__name__ if view else 'unknown view'}: {exc}",
            exc_info=exc,
        )
        return Response(
            {
                'detail': 'An unexpected error occurred.',
                'code': ErrorCodes.SERVER_ERROR
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    error_data = {}

    if isinstance(exc, ValidationError):
        error_data['detail'] = 'Validation failed.'
        error_data['code'] = ErrorCodes.VALIDATION_ERROR

        if isinstance(exc.detail, dict):
            field_errors = {}
            for field, errors in exc.detail.items():
                if isinstance(errors, list):
                    field_errors[field] = [str(e) for e in errors]
                else:
                    field_errors[field] = [str(errors)]
            error_data['field_errors'] = field_errors
        elif isinstance(exc.detail, list):
            error_data['detail'] = ' '.join([str(e) for e in exc.detail])
        else:
            error_data['detail'] = str(exc.detail)

    elif isinstance(exc, PermissionDenied):
        error_data['detail'] = str(exc.detail)
        error_data['code'] = ErrorCodes.PERMISSION_DENIED

    elif isinstance(exc, NotFound):
        error_data['detail'] = str(exc.detail)
        error_data['code'] = ErrorCodes.NOT_FOUND

    elif isinstance(exc, (AuthenticationFailed, NotAuthenticated)):
        error_data['detail'] = str(exc.detail)
        error_data['code'] = ErrorCodes.AUTHENTICATION_FAILED

    elif isinstance(exc, PaymentRequired):
        error_data['detail'] = str(exc.detail)
        error_data['code'] = ErrorCodes.PAYMENT_REQUIRED

    elif getattr(exc, 'default_code', None) == 'throttled':
        error_data['detail'] = str(exc.detail)
        error_data['code'] = ErrorCodes.RATE_LIMIT_EXCEEDED

    else:
        detail = getattr(exc, 'detail', 'An error occurred.')
        if isinstance(detail, dict):
            error_data['detail'] = detail.get('detail', str(detail))
        else:
            error_data['detail'] = str(detail)
        error_data['code'] = ErrorCodes.SERVER_ERROR

    response.data = error_data
    return response


def create_error_response(message, code=ErrorCodes.INVALID_INPUT, status_code=status.HTTP_400_BAD_REQUEST, **extra):
    error_data = {
        'detail': message,
        'code': code
    }
    error_data.update(extra)
    return Response(error_data, status=status_code)
