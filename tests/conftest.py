import logging
from pathlib import Path

import pytest

from epg_operator import env_vars


@pytest.fixture(autouse=True, scope="session")
def configure_logging():
    """Automatically configure logging for all tests"""
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)s %(filename)s:%(lineno)d -- %(message)s",
        force=True,  # Force reconfiguration
    )
    log_dir = env_vars.EPG_OPERATOR_LOGGING_PATH
    if log_dir and not Path(log_dir).is_absolute():
        # Relative to project root directory
        project_root = Path(__file__).parent.parent
        log_dir = str(project_root / log_dir)
        env_vars.EPG_OPERATOR_LOGGING_PATH = log_dir

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
