"""
Runs one rdev role in the foreground.

Wires the command-line selection and the loaded settings into a sender
or receiver pipeline, after configuring logging:

    build   watch FILE and push it to the runner at ADDR
    run     listen on ADDR, save each received file as FILE and run it
"""

import logging
import logging.handlers
import sys

from rdev.config import RunConfig, Settings
from rdev.receiver import ReceiverPipeline
from rdev.sender import SenderPipeline

logger = logging.getLogger(__name__)

ROLE_BUILD = "build"
ROLE_RUN = "run"


def setup_logging(settings: Settings, quiet: bool = False) -> None:
    """Configure the stderr handler and, if set, a rotating file log."""
    level = logging.ERROR if quiet else getattr(logging, settings.log_level, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)

    log_path = settings.log_file
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.handlers.RotatingFileHandler(
            str(log_path),
            maxBytes=settings.max_log_size_mb * 1024 * 1024,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root_logger.addHandler(fh)


def build_pipeline(role: str, config: RunConfig, settings: Settings):
    """Return the pipeline for *role*."""
    if role == ROLE_BUILD:
        return SenderPipeline(config, settings)
    if role == ROLE_RUN:
        return ReceiverPipeline(config, settings)
    raise ValueError(f"Invalid role {role!r}")


def run_role(role: str, config: RunConfig, settings: Settings) -> None:
    """Run the selected pipeline; only returns by raising."""
    pipeline = build_pipeline(role, config, settings)
    logger.debug("Starting %s role (%s, %s)", role, config.file, config.endpoint)
    pipeline.run()
