import functools
import inspect
import logging
import time

logger = logging.getLogger(__name__)


def log_call(name: str = None):
    """Logs entry / exit of a pipeline stage with timing (sync or async)"""
    def deco(fn):
        display = name or fn.__qualname__

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args, **kwargs):
                start = time.perf_counter()
                logger.debug(f"CALL {display}")
                try:
                    res = await fn(*args, **kwargs)
                except Exception as e:
                    took = (time.perf_counter() - start) * 1000
                    logger.error(f"ERR {display}: {e} ({took:.1f} ms)")
                    raise
                took = (time.perf_counter() - start) * 1000
                logger.info(f"OK {display} ({took:.1f} ms)")
                return res
            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            logger.debug(f"CALL {display}")
            try:
                res = fn(*args, **kwargs)
            except Exception as e:
                took = (time.perf_counter() - start) * 1000
                logger.error(f"ERR {display}: {e} ({took:.1f} ms)")
                raise
            took = (time.perf_counter() - start) * 1000
            logger.info(f"OK {display} ({took:.1f} ms)")
            return res
        return wrapper
    return deco
