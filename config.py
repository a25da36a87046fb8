"""
Vault Assistant — environment configuration and logging setup.

Values come from the process environment, with a `.env` file in the working
directory loaded first.
"""

import os
import logging

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


VAULT_PATH = os.getenv('VAULT_PATH', 'story_vault')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
LOG_FILE = os.getenv('LOG_FILE', 'logs/vault_assistant.log')

# Lorebook creation skips review so entry proposals in the same turn have
# somewhere to land. Set to false to stage lorebook creates like everything else.
AUTO_APPROVE_LOREBOOK_CREATE = _env_flag('AUTO_APPROVE_LOREBOOK_CREATE', True)

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def configure_logging(level: str = None, log_file: str = None) -> None:
    """Configure root logging with a file handler and a console handler.

    Pass log_file="" to log to the console only.
    """
    level = level or LOG_LEVEL
    log_file = LOG_FILE if log_file is None else log_file

    handlers = [logging.StreamHandler()]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.insert(0, logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
