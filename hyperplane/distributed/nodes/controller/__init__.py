from .config import ControllerConfig as ControllerConfig
from .server import ControllerServer as ControllerServer
