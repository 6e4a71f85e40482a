import logging
import sys


class ContextFormatter(logging.Formatter):
    """Fills in ``phase`` and ``task`` for records logged outside a pipeline."""
    def format(self, record):
        for field in ("phase", "task"):
            if not hasattr(record, field):
                setattr(record, field, "-")
        return super().format(record)


def configure_logging(verbose: bool = False) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ContextFormatter(
        "%(asctime)s %(levelname)s %(name)s [phase=%(phase)s task=%(task)s] - %(message)s"
    ))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        handlers=[handler],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def mask_secret(secret: str | None) -> str:
    """Mask a secret for log output, e.g. ``abcd...wxyz``."""
    if not secret or len(secret) < 8:
        return "***"
    return f"{secret[:4]}...{secret[-4:]}"
