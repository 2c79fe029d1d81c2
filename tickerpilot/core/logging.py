"""
Logging for the TickerPilot billing service.

Webhook handling touches the Paddle API key, the webhook secret and signature
headers. RedactSecretsFilter masks the configured secret values and any h1=
signature digest before a record reaches a handler.
"""
import logging
import re
import sys
from pathlib import Path

from tickerpilot.core.config import settings

_SIGNATURE_RE = re.compile(r"(h1=)[0-9a-fA-F]{16,}")
_MASK = "***"


class RedactSecretsFilter(logging.Filter):
    def __init__(self, secrets=None):
        super().__init__()
        if secrets is None:
            secrets = (settings.PADDLE_WEBHOOK_SECRET, settings.PADDLE_API_KEY, settings.ADMIN_KEY)
        self.secrets = [s for s in secrets if s]

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, _MASK)
        return _SIGNATURE_RE.sub(r"\1" + _MASK, text)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging() -> None:
    """
    Stdout plus logs/tickerpilot.log, DEBUG when settings.DEBUG is on.
    """
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    redact = RedactSecretsFilter()
    handlers = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_dir / "tickerpilot.log"),
    ]
    for handler in handlers:
        handler.addFilter(redact)

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    logging.getLogger("uvicorn.access").disabled = True
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    # requests' connection pool logs every Paddle API call at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("arq.worker").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
