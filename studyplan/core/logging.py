import logging

from studyplan.core.config import settings

ROOT = "studyplan"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        root.addHandler(handler)
        root.setLevel(settings.LOG_LEVEL.upper())
        root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    _configure_root()
    # children propagate to the single handler on the package root
    return logging.getLogger(f"{ROOT}.{name}")


"""
Logging setup and it configures:
- One stream handler on the "studyplan" logger
- Level from LOG_LEVEL
- Per-module child loggers (studyplan.llm.client, studyplan.pipeline.planner, ...)

The main purpose:
Standardized logging for the pipeline, the LLM client and the API.
"""
