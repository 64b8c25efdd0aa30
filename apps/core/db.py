import logging

from django.db import NotSupportedError, transaction

logger = logging.getLogger(__name__)


def run_in_transaction(fn, *args, using=None, **kwargs):
    """
    Run ``fn`` inside ``transaction.atomic``.

    Deployments whose database cannot open a transaction raise
    ``NotSupportedError``; in that case the call is retried once without a
    transaction. Any other error propagates unchanged.
    """
    try:
        with transaction.atomic(using=using):
            return fn(*args, **kwargs)
    except NotSupportedError:
        logger.warning(
            "Transactions are not supported on this database; retrying %s without one.",
            getattr(fn, "__qualname__", fn),
        )
        return fn(*args, **kwargs)


def run_with_effects(fn, *args, using=None, **kwargs):
    """
    Run ``fn(effects, *args, **kwargs)`` via ``run_in_transaction``, then call
    every callable it appended to ``effects``.

    Effects run only once the transaction has committed. A failing effect is
    logged and does not affect the result or the remaining effects.
    """
    effects = []

    def attempt(*a, **kw):
        effects.clear()
        return fn(effects, *a, **kw)

    result = run_in_transaction(attempt, *args, using=using, **kwargs)
    for effect in effects:
        try:
            effect()
        except Exception:
            logger.exception("Post-commit side effect %s failed", effect)
    return result
