import logging


_pylog = logging.getLogger("crm")


class _Log:
    def human(self, level: str, message: str, **fields):
        levelno = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }.get(level.lower(), logging.INFO)
        _pylog.log(levelno, message, extra=fields)


log = _Log()
