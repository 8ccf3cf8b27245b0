from .responder import (
    DNSProtocol as DNSProtocol,
    DNSServer as DNSServer,
    SessionResolver as SessionResolver,
)
