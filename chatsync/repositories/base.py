import functools

from pymongo.errors import DuplicateKeyError, PyMongoError

from chatsync.errors import DuplicateKey, StoreFailure


def store_call(func):
    """Translate driver errors raised by a repository coroutine into StoreFailure."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DuplicateKeyError as exc:
            raise DuplicateKey(str(exc)) from exc
        except PyMongoError as exc:
            raise StoreFailure(str(exc)) from exc

    return wrapper
