import logging, json, sys, time, os, re

# Field names whose values must never reach a log sink
SENSITIVE_FIELDS = ("password", "new_password", "current_password", "master_key", "private_key", "derived_key", "secret")

_REDACT_RE = re.compile(
    r"(?P<key>%s)(?P<sep>\s*[=:]\s*)(?P<val>[^\s,;}]+)" % "|".join(SENSITIVE_FIELDS),
    re.IGNORECASE,
)


class RedactingFilter(logging.Filter):
    """Masks ``password=...`` style fragments and sensitive ``extra`` fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        # Redact the merged message; %-style args may carry the secret itself
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            msg = str(record.msg)
        record.msg = _REDACT_RE.sub(r"\g<key>\g<sep>***", msg)
        record.args = ()
        for field in SENSITIVE_FIELDS:
            if field in record.__dict__:
                setattr(record, field, "***")
        return True


class JsonFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%SZ")
        self.converter = time.gmtime  # Use UTC timestamps

    def format(self, record: logging.LogRecord) -> str:
        doc = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            doc["exc"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False)


def get_logger(name="HRM.Keys", level=None, to_file=None):
    """Unified structured logger for all key-management components."""
    logger = logging.getLogger(name)
    logger.setLevel(level or os.getenv("HRM_KEYS_LOG_LEVEL", "INFO").upper())

    if not logger.handlers:
        formatter = JsonFormatter()
        redactor = RedactingFilter()
        logger.addFilter(redactor)

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        to_file = to_file or os.getenv("HRM_KEYS_LOG_FILE")
        if to_file:
            # Ensure the directory exists before writing
            os.makedirs(os.path.dirname(to_file) or ".", exist_ok=True)
            file_handler = logging.FileHandler(to_file)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger
