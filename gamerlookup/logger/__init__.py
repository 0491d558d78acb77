import inspect
import logging.handlers
import os
from pathlib import Path

LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_FILE = LOG_DIR / "gamer_lookup.log"
LOG_DIR.mkdir(parents=True, exist_ok=True)


class ClassNameFilter(logging.Filter):
    def filter(self, record):
        cwd = os.getcwd()
        abs_path = os.path.abspath(record.pathname)
        rel_path = os.path.relpath(abs_path, cwd)
        pkg_index = rel_path.find("gamerlookup" + os.sep)
        if pkg_index != -1:
            relpath = rel_path[pkg_index + len("gamerlookup" + os.sep):]
        else:
            relpath = rel_path
        if relpath.endswith(".py"):
            relpath = relpath[:-3]
        record.relpath = relpath.replace(os.sep, ".").replace("\\", ".")
        record.classname = ""
        frame = inspect.currentframe()
        while frame:
            code = frame.f_code
            if code.co_name == record.funcName:
                self_obj = frame.f_locals.get("self")
                if self_obj:
                    record.classname = self_obj.__class__.__name__
                    break
            frame = frame.f_back
        return True


class SmartClassFormatter(logging.Formatter):
    def format(self, record):
        # records coming through child loggers skip the filter above
        if not hasattr(record, "relpath"):
            record.relpath = record.module
        if not hasattr(record, "classname"):
            record.classname = ""
        return super().format(record)


_SECRETS: set[str] = set()


def register_secret(value: str) -> None:
    """Mask ``value`` in every record this logger emits from now on."""
    if value and len(value.strip()) >= 6:
        _SECRETS.add(value.strip())


class SecretRedactionFilter(logging.Filter):
    def filter(self, record):
        if not _SECRETS:
            return True
        message = record.getMessage()
        redacted = message
        for secret in _SECRETS:
            redacted = redacted.replace(secret, "***")
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


handler = logging.handlers.TimedRotatingFileHandler(
    LOG_FILE, when="midnight", interval=1, backupCount=5, encoding="utf-8"
)
console = logging.StreamHandler()

fmt = "%(asctime)s - [%(levelname)s] - %(relpath)s.%(classname)s.%(funcName)s(): %(message)s {%(lineno)d}"
formatter = SmartClassFormatter(fmt)

handler.setFormatter(formatter)
console.setFormatter(formatter)

logger = logging.getLogger("GamerLookup")
logger.setLevel(os.getenv("LOG_LEVEL", "DEBUG").upper())
logger.addFilter(ClassNameFilter())
logger.addFilter(SecretRedactionFilter())
logger.addHandler(handler)
logger.addHandler(console)
logger.propagate = False
