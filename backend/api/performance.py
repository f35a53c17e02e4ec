"""
Query and timing instrumentation used by the request middleware and by the
heavier list endpoints (feed, conversations, marketplace browse).
"""
import re
import time
import logging
from collections import Counter
from functools import wraps
from django.db import connection

logger = logging.getLogger(__name__)

SLOW_OPERATION_SECONDS = 1.0
HIGH_QUERY_COUNT = 10


def track_performance(func):
    """Log calls that run slowly or issue an unusual number of queries."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        start_queries = get_query_count()
        try:
            return func(*args, **kwargs)
        finally:
            duration = time.time() - start_time
            query_count = get_query_count() - start_queries
            if duration > SLOW_OPERATION_SECONDS:
                logger.warning(
                    f"Slow operation: {func.__qualname__} took {duration:.3f}s ({query_count} queries)"
                )
            if query_count > HIGH_QUERY_COUNT:
                logger.warning(
                    f"High query count: {func.__qualname__} executed {query_count} queries"
                )

    return wrapper


def get_query_count():
    # connection.queries is only populated when DEBUG is on
    return len(connection.queries)


def _query_pattern(sql):
    pattern = re.sub(r"'[^']*'", "'?'", sql)
    return re.sub(r'\b\d+\b', '?', pattern)


def log_query_performance():
    """Summarise the queries of the current request, flagging slow and repeated ones."""
    queries = connection.queries
    if not queries:
        return

    total_time = sum(float(q['time']) for q in queries)
    logger.info(f"Query performance: {len(queries)} queries in {total_time:.3f}s")

    for query in queries:
        if float(query['time']) > 0.1:
            logger.warning(f"Slow query ({query['time']}s): {query['sql'][:200]}...")

    repeated = Counter(_query_pattern(q['sql']) for q in queries)
    for pattern, count in repeated.most_common(3):
        if count > 3:
            logger.warning(f"Potential N+1: query executed {count} times: {pattern[:150]}...")
