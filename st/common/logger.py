import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from st.common.setup import PATHS

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# Handlers are tagged "<logger>:<role>" so a second get_logger() call can tell what is already attached.
def _attach(logger, role, handler, level, fmt):
    tag = f"{logger.name}:{role}"
    if any(h.get_name() == tag for h in logger.handlers):
        handler.close()
        return
    handler.setLevel(level)
    handler.setFormatter(fmt)
    handler.set_name(tag)
    logger.addHandler(handler)

def _has_role(logger, role):
    return any(h.get_name() == f"{logger.name}:{role}" for h in logger.handlers)

# Keeps the newest `keep` per-run debug logs and deletes the rest.
def _prune_debug_runs(debug_dir, name, keep):
    runs = sorted(debug_dir.glob(f"{name}_*.log"), key=lambda p: p.stat().st_mtime, reverse=True)
    for old_run in runs[keep:]:
        try:
            old_run.unlink()
        except OSError:
            # Still open by another instance, it'll go next run
            continue

# STUDYTRACKER_LOG_LEVEL=INFO etc. overrides the level passed in; anything unrecognised is ignored.
def _level_from_env(default):
    name = os.getenv("STUDYTRACKER_LOG_LEVEL", "").strip().upper()
    level = logging.getLevelName(name) if name else None
    return level if isinstance(level, int) else default

# Builds (or returns the already-built) app logger: a rotating log across runs, latest.log for just this run, one
# full debug log per run in logs/debug, and console output if asked for (or STUDYTRACKER_LOG_CONSOLE=1).
def get_logger(
        name = "studytracker",
        level = logging.INFO,
        log_dir: Path | None = None,
        max_bytes = 5 * 1024 * 1024,
        backup_count = 5,
        persistent = True,
        console = False,
        historical_debugs: int = 10
) -> logging.Logger:
    level = _level_from_env(level)
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(min(level, logging.DEBUG) if historical_debugs > 0 else level)

    log_dir = log_dir or PATHS.logs
    log_dir.mkdir(parents=True, exist_ok=True)
    fmt = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    if persistent and not _has_role(logger, "persistent"):
        _attach(logger, "persistent", RotatingFileHandler(log_dir / f"{name}.log", maxBytes=max_bytes,
                                                          backupCount=backup_count, encoding="utf-8"), level, fmt)
    if not _has_role(logger, "latest"):
        _attach(logger, "latest", logging.FileHandler(log_dir / "latest.log", mode="w", encoding="utf-8"),
                level, fmt)

    if historical_debugs > 0 and not _has_role(logger, "historical_debug"):
        debug_dir = log_dir / "debug"
        debug_dir.mkdir(parents=True, exist_ok=True)
        this_run = debug_dir / f"{name}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
        _attach(logger, "historical_debug", logging.FileHandler(this_run, encoding="utf-8"), logging.DEBUG, fmt)
        _prune_debug_runs(debug_dir, name, historical_debugs)

    if (console or os.getenv("STUDYTRACKER_LOG_CONSOLE") == "1") and not _has_role(logger, "console"):
        _attach(logger, "console", logging.StreamHandler(), level, fmt)

    return logger

log = get_logger(level=logging.DEBUG, console=False, historical_debugs=10)
log.info("=== STUDYTRACKER PROCESS STARTED ===")
