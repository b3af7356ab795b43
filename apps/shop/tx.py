import logging
import time
from functools import wraps

from django.conf import settings
from django.db import DatabaseError, transaction

logger = logging.getLogger(__name__)

# PostgreSQL: serialization failure / deadlock detected
PG_RETRY_ERRCODES = {'40001', '40P01'}


def _pgcode_from(exc: Exception):
    return getattr(exc, 'pgcode', None) or getattr(getattr(exc, '__cause__', None), 'pgcode', None)


def is_retryable(exc: Exception) -> bool:
    if not isinstance(exc, DatabaseError):
        return False
    code = _pgcode_from(exc)
    if code and code in PG_RETRY_ERRCODES:
        return True
    msg = str(exc).lower()
    return any(k in msg for k in (
        'deadlock detected', 'could not serialize access', 'database is locked', 'database table is locked',
    ))


def retry_on_tx_failure(max_attempts=None, backoff=None):
    """Re-run the whole unit of work on transient lock errors.

    Only for entry points that fail cleanly without partial effect; must sit
    outside ``transaction.atomic`` so every attempt gets a fresh transaction.
    """
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            attempts = max_attempts or getattr(settings, 'TX_RETRY_ATTEMPTS', 3)
            delay = backoff if backoff is not None else getattr(settings, 'TX_RETRY_BACKOFF', 0.05)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except DatabaseError as e:
                    # Inside an outer atomic block a retry would reuse the broken transaction.
                    if attempt >= attempts or not is_retryable(e) or transaction.get_connection().in_atomic_block:
                        raise
                    logger.warning("TX RETRY — %s attempt %d/%d: %s", fn.__name__, attempt, attempts, e)
                    time.sleep(delay * attempt)
        return wrapper
    return deco


def require_atomic():
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("stock and order mutations must run inside transaction.atomic()")
