import pytest
from django.db import IntegrityError, OperationalError, transaction

from .tx import is_retryable, retry_on_tx_failure

pytestmark = pytest.mark.django_db(transaction=True)


@pytest.mark.parametrize('message', [
    'database is locked',
    'database table is locked',
    'deadlock detected',
    'could not serialize access due to concurrent update',
])
def test_lock_conflicts_are_retryable(message):
    assert is_retryable(OperationalError(message))


def test_other_errors_are_not_retryable():
    assert not is_retryable(IntegrityError('UNIQUE constraint failed'))
    assert not is_retryable(ValueError('database is locked'))


def flaky(failures, exc):
    calls = []

    @retry_on_tx_failure(max_attempts=3, backoff=0)
    def work():
        calls.append(1)
        if len(calls) <= failures:
            raise exc
        return 'done'

    return work, calls


def test_sqlite_table_lock_is_retried_until_it_clears():
    work, calls = flaky(2, OperationalError('database table is locked'))

    assert work() == 'done'
    assert len(calls) == 3


def test_retry_gives_up_after_max_attempts():
    work, calls = flaky(5, OperationalError('database is locked'))

    with pytest.raises(OperationalError):
        work()
    assert len(calls) == 3


def test_no_retry_inside_an_outer_transaction():
    work, calls = flaky(1, OperationalError('database is locked'))

    with pytest.raises(OperationalError):
        with transaction.atomic():
            work()
    assert len(calls) == 1
