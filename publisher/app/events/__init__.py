from .models import StatusNotice, Severity
from .sink import StatusSink, NullStatusSink, LoggingStatusSink

__all__ = [
    "StatusNotice",
    "Severity",
    "StatusSink",
    "NullStatusSink",
    "LoggingStatusSink",
]
