"""Logging configuration for the clipsync CLI."""
import logging


def configure_logging(verbose: bool) -> None:
    """Configure logging level based on verbosity setting.

    Args:
        verbose: If True, log DEBUG and up; otherwise WARNING and up.

    Logs go to stderr so they never mix with received clipboard content
    printed on stdout.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        handlers=[logging.StreamHandler()],
    )
    # websockets logs every frame at DEBUG; keep it at INFO even when verbose.
    logging.getLogger("websockets").setLevel(max(level, logging.INFO))
