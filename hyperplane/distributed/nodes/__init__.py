from .controller import (
    ControllerConfig as ControllerConfig,
    ControllerServer as ControllerServer,
)
from .drone import (
    DroneConfig as DroneConfig,
    DroneServer as DroneServer,
)
from .shutdown import (
    install_signal_handlers as install_signal_handlers,
    remove_signal_handlers as remove_signal_handlers,
    wait_for_shutdown as wait_for_shutdown,
    wait_or_cancel as wait_or_cancel,
)
