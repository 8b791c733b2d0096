import logging
from contextvars import ContextVar
from pathlib import Path

from epg_operator import env_vars

# namespace/name of the EpgConf being reconciled by the current task
reconcile_key_ctx_var: ContextVar[str] = ContextVar("reconcile_key", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s %(filename)s:%(lineno)d [%(reconcile_key)s] -- %(message)s"

_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "kubernetes")


class ReconcileKeyFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.reconcile_key = reconcile_key_ctx_var.get()
        return True


def _build_handler(file_name: str | None) -> logging.Handler:
    log_dir = env_vars.EPG_OPERATOR_LOGGING_PATH
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(
            Path(log_dir) / (file_name or env_vars.EPG_OPERATOR_LOGGING_FILE_NAME)
        )
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(ReconcileKeyFilter())
    return handler


def init_logger(name: str | None = None, file_name: str | None = None) -> logging.Logger:
    """Return a logger with the operator's handler attached exactly once."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, ReconcileKeyFilter) for h in logger.handlers for f in h.filters):
        logger.addHandler(_build_handler(file_name))
    logger.setLevel(env_vars.EPG_OPERATOR_LOGGING_LEVEL.upper())
    logger.propagate = False
    return logger


def set_verbose(verbose: bool) -> None:
    """Raise every operator logger to DEBUG and quieten client libraries."""
    level = logging.DEBUG if verbose else env_vars.EPG_OPERATOR_LOGGING_LEVEL.upper()
    for logger_name, logger in logging.Logger.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and logger_name.startswith("epg_operator"):
            logger.setLevel(level)
    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
