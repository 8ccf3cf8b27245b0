from .recovery import (
    RecoveredState as RecoveredState,
    rebuild as rebuild,
    snapshot as snapshot,
)
from .restart_policy import RestartPolicy as RestartPolicy
from .session_supervisor import (
    SessionSupervisor as SessionSupervisor,
    SupervisorConfig as SupervisorConfig,
)
from .session_worker import (
    Reconcile as Reconcile,
    SessionWorker as SessionWorker,
)
from .states import (
    Assign as Assign,
    Assigning as Assigning,
    Drain as Drain,
    Draining as Draining,
    Errored as Errored,
    Faulted as Faulted,
    Idle as Idle,
    Running as Running,
    Stable as Stable,
    Started as Started,
    Superseded as Superseded,
    SupervisorEvent as SupervisorEvent,
    SupervisorState as SupervisorState,
    Terminated as Terminated,
    TornDown as TornDown,
    advance as advance,
)
