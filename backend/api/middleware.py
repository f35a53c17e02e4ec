import logging
import time
from django.utils.deprecation import MiddlewareMixin
from django.http import JsonResponse
from rest_framework import status
from .exceptions import ErrorCodes
from .performance import get_query_count, log_query_performance

logger = logging.getLogger(__name__)

MAX_PAYLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_CONTENT_TYPES = ('application/json', 'multipart/form-data', 'application/x-www-form-urlencoded')
# Webhook bodies are verified byte-for-byte by the payment providers
RAW_BODY_PATH_PREFIX = '/api/webhooks/'

SLOW_REQUEST_THRESHOLD = 0.5
HIGH_QUERY_COUNT_THRESHOLD = 10
EXCESSIVE_QUERY_COUNT_THRESHOLD = 20


class RequestValidationMiddleware(MiddlewareMixin):
    """
    Reject oversized or oddly typed API payloads and log every API request
    """

    def process_request(self, request):
        request._start_time = time.time()
        request._start_queries = get_query_count()

        if request.method not in ('POST', 'PUT', 'PATCH'):
            return None

        try:
            content_length = int(request.META.get('CONTENT_LENGTH') or 0)
        except (ValueError, TypeError):
            content_length = 0
        if content_length > MAX_PAYLOAD_BYTES:
            logger.warning(
                f"Request too large: {content_length} bytes from {request.META.get('REMOTE_ADDR')}"
            )
            return JsonResponse(
                {'detail': 'Request payload too large. Maximum size is 10MB.', 'code': ErrorCodes.INVALID_INPUT},
                status=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
            )

        content_type = request.META.get('CONTENT_TYPE', '')
        if (
            content_type
            and not content_type.startswith(ALLOWED_CONTENT_TYPES)
            and not request.path.startswith(RAW_BODY_PATH_PREFIX)
        ):
            logger.warning(
                f"Invalid content type: {content_type} from {request.META.get('REMOTE_ADDR')}"
            )
            return JsonResponse(
                {'detail': 'Unsupported content type.', 'code': ErrorCodes.INVALID_INPUT},
                status=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
            )

        return None

    def process_response(self, request, response):
        if not hasattr(request, '_start_time') or not request.path.startswith('/api/'):
            return response

        duration = time.time() - request._start_time
        query_count = get_query_count() - getattr(request, '_start_queries', 0)
        user = getattr(request, 'user', None)

        log_data = {
            'method': request.method,
            'path': request.path,
            'status': response.status_code,
            'duration': f"{duration:.3f}s",
            'queries': query_count,
            'ip': request.META.get('REMOTE_ADDR'),
            'user': getattr(user, 'email', 'anonymous') if user is not None else 'anonymous',
        }

        if response.status_code >= 500:
            logger.error(f"Request error: {log_data}")
        elif response.status_code >= 400:
            logger.warning(f"Request warning: {log_data}")
        elif query_count > EXCESSIVE_QUERY_COUNT_THRESHOLD:
            logger.warning(f"Excessive query count: {log_data}")
            log_query_performance()
        elif query_count > HIGH_QUERY_COUNT_THRESHOLD:
            logger.warning(f"High query count: {log_data}")
        elif duration > SLOW_REQUEST_THRESHOLD:
            logger.warning(f"Slow request: {log_data}")
            log_query_performance()
        else:
            logger.info(f"Request: {log_data}")

        return response


class SecurityHeadersMiddleware(MiddlewareMixin):
    """
    Add security headers to responses
    """

    def process_response(self, request, response):
        response['X-Content-Type-Options'] = 'nosniff'
        response['X-Frame-Options'] = 'DENY'
        response['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response['Permissions-Policy'] = 'camera=(self), microphone=(self), geolocation=()'

        if 'Server' in response:
            del response['Server']

        return response
