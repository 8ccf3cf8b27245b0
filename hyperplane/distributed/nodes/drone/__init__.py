from .config import DroneConfig as DroneConfig
from .server import DroneServer as DroneServer
