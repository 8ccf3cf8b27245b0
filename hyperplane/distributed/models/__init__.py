from .message import Message as Message
from .messages import (
    DrainDrone as DrainDrone,
    DroneHeartbeat as DroneHeartbeat,
    ScheduleRequest as ScheduleRequest,
    ScheduleResponse as ScheduleResponse,
    SessionActivity as SessionActivity,
    SessionAssign as SessionAssign,
    SessionDrain as SessionDrain,
    SessionStatus as SessionStatus,
)
from .session import (
    ResourceLimits as ResourceLimits,
    SessionRecord as SessionRecord,
    SessionSpec as SessionSpec,
    SessionState as SessionState,
)
