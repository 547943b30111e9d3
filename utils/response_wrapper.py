import functools


def response_wrapper(func):
    """Wrap a view's return value as ``{"message": ..., "data": ...}``.

    A ``message`` key in a returned dict is lifted to the envelope.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        result = await func(*args, **kwargs)
        message = "success"
        if isinstance(result, dict) and "message" in result:
            result = dict(result)
            message = result.pop("message")
        return {"message": message, "data": result}

    return wrapper
