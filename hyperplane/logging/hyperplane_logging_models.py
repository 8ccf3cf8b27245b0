from .models import Entry, LogLevel


class ServerDebug(Entry, kw_only=True):
    node_id: str
    node_role: str
    level: LogLevel = LogLevel.DEBUG

class ServerInfo(Entry, kw_only=True):
    node_id: str
    node_role: str
    level: LogLevel = LogLevel.INFO

class ServerWarning(Entry, kw_only=True):
    node_id: str
    node_role: str
    level: LogLevel = LogLevel.WARN

class ServerError(Entry, kw_only=True):
    node_id: str
    node_role: str
    level: LogLevel = LogLevel.ERROR

class ServerFatal(Entry, kw_only=True):
    node_id: str
    node_role: str
    level: LogLevel = LogLevel.FATAL

class SessionDebug(Entry, kw_only=True):
    node_id: str
    session_id: str
    epoch: int
    level: LogLevel = LogLevel.DEBUG

class SessionInfo(Entry, kw_only=True):
    node_id: str
    session_id: str
    epoch: int
    level: LogLevel = LogLevel.INFO

class SessionWarning(Entry, kw_only=True):
    node_id: str
    session_id: str
    epoch: int
    level: LogLevel = LogLevel.WARN

class SessionError(Entry, kw_only=True):
    node_id: str
    session_id: str
    epoch: int
    cause: str | None = None
    level: LogLevel = LogLevel.ERROR

class CertificateInfo(Entry, kw_only=True):
    node_id: str
    domain: str
    level: LogLevel = LogLevel.INFO

class CertificateError(Entry, kw_only=True):
    node_id: str
    domain: str
    cause: str | None = None
    level: LogLevel = LogLevel.ERROR
