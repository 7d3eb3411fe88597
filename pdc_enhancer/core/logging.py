"""Root logger configuration shared by the enhancer and exporter entrypoints."""

import logging

# WARN is accepted in configuration as an alias of WARNING.
_LEVEL_ALIASES = {"WARN": "WARNING"}


def setup_logging(log_level: str = "INFO", quiet: bool = False) -> None:
    """Configure the root logger. quiet keeps only warnings and errors."""
    name = _LEVEL_ALIASES.get(log_level.strip().upper(), log_level.strip().upper())
    level = getattr(logging, name, None)
    if not isinstance(level, int):
        level = logging.INFO
    if quiet:
        level = max(level, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
        force=True,
    )
