from __future__ import annotations

import asyncio
import ipaddress
import socket
import time

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.opcode
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from hyperplane.distributed.directory import SessionDirectory
from hyperplane.logging import Logger
from hyperplane.logging.hyperplane_logging_models import ServerDebug, ServerInfo


class SessionResolver:
    """
    Answers queries for ``<session_id>.<domain>`` from the directory.

    NOERROR + A/AAAA     session RUNNING with an address of that family
    NOERROR, no data     known name, other query type (SOA in authority)
    NXDOMAIN             unknown or non-running session (SOA in authority)
    REFUSED              name outside the zone
    FORMERR              malformed query
    NOTIMP               opcode other than QUERY

    Wire parsing and encoding are left to dnspython. ``respond`` only
    reads the directory's in-memory map and never suspends.
    """

    def __init__(
        self,
        directory: SessionDirectory,
        ttl: int = 5,
        soa_email: str | None = None,
    ) -> None:
        self._directory = directory
        self._ttl = ttl
        self._zone = directory.domain
        self._origin = dns.name.from_text(self._zone)
        self._contact = self._contact_name(soa_email)
        self._serial = int(time.time()) & 0xFFFFFFFF

    @property
    def zone(self) -> str:
        return self._zone

    def _contact_name(self, soa_email: str | None) -> dns.name.Name:
        if not soa_email:
            return dns.name.from_text(f"hostmaster.{self._zone}")

        local, _, domain = soa_email.partition("@")
        return dns.name.from_text(f"{local}.{domain}" if domain else local)

    def soa(self) -> dns.rrset.RRset:
        return dns.rrset.from_text(
            self._origin,
            self._ttl,
            dns.rdataclass.IN,
            dns.rdatatype.SOA,
            f"{self._origin} {self._contact} {self._serial} 3600 600 86400 {self._ttl}",
        )

    def respond(self, data: bytes) -> bytes | None:
        """
        Wire-in, wire-out. Returns None for datagrams that get no
        reply: responses, and garbage too short to carry a query id.
        """
        try:
            query = dns.message.from_wire(data)

        except dns.exception.DNSException:
            if len(data) < 2:
                return None

            return self._format_error(int.from_bytes(data[:2], "big")).to_wire()

        if query.flags & dns.flags.QR:
            return None

        return self.answer(query).to_wire()

    def answer(self, query: dns.message.Message) -> dns.message.Message:
        if len(query.question) != 1:
            return self._format_error(query.id)

        response = dns.message.make_response(query)
        question = query.question[0]

        if query.opcode() != dns.opcode.QUERY:
            response.set_rcode(dns.rcode.NOTIMP)
            return response

        name = question.name.to_text(omit_final_dot=True)
        if question.rdclass != dns.rdataclass.IN or not self._directory.in_zone(name):
            response.set_rcode(dns.rcode.REFUSED)
            return response

        response.flags |= dns.flags.AA

        if SessionDirectory.normalize(name) == self._zone:
            if question.rdtype in (dns.rdatatype.SOA, dns.rdatatype.ANY):
                response.answer.append(self.soa())
            else:
                response.authority.append(self.soa())

            return response

        entry = self._directory.lookup(name)
        if entry is None:
            response.set_rcode(dns.rcode.NXDOMAIN)
            response.authority.append(self.soa())
            return response

        record = self._address_record(question.name, entry.address)
        if record is not None and question.rdtype in (record.rdtype, dns.rdatatype.ANY):
            response.answer.append(record)
        else:
            response.authority.append(self.soa())

        return response

    def _address_record(self, name: dns.name.Name, address: str) -> dns.rrset.RRset | None:
        try:
            ip = ipaddress.ip_address(address)

        except ValueError:
            # Not an IP address, so there is no A/AAAA data to give.
            return None

        rdtype = dns.rdatatype.A if ip.version == 4 else dns.rdatatype.AAAA
        return dns.rrset.from_text(name, self._ttl, dns.rdataclass.IN, rdtype, str(ip))

    def _format_error(self, query_id: int) -> dns.message.Message:
        response = dns.message.Message(id=query_id)
        response.flags = dns.flags.QR
        response.set_rcode(dns.rcode.FORMERR)
        return response


class DNSProtocol(asyncio.DatagramProtocol):
    def __init__(self, resolver: SessionResolver) -> None:
        self._resolver = resolver
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        response = self._resolver.respond(data)
        if response is not None and self.transport is not None:
            self.transport.sendto(response, addr)

    def error_received(self, exc: Exception) -> None:
        # UDP errors (e.g. ICMP port unreachable) concern one client only.
        pass


class DNSServer:
    """UDP name-resolution endpoint for the session zone."""

    def __init__(
        self,
        resolver: SessionResolver,
        host: str = "0.0.0.0",
        port: int = 53,
        node_id: str = "controller",
        logger: Logger | None = None,
    ) -> None:
        self._resolver = resolver
        self._host = host
        self._port = port
        self._node_id = node_id
        self._logger = logger or Logger()
        self._transport: asyncio.DatagramTransport | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        if self._transport is None:
            return None

        host, port = self._transport.get_extra_info("sockname")[:2]
        return host, port

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            version = ipaddress.ip_address(self._host).version
            family = socket.AF_INET6 if version == 6 else socket.AF_INET

        except ValueError:
            family = socket.AF_UNSPEC

        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: DNSProtocol(self._resolver),
            local_addr=(self._host, self._port),
            family=family,
        )

        host, port = self.address
        await self._logger.log(
            ServerInfo(
                message=f"Serving zone {self._resolver.zone} on udp://{host}:{port}",
                node_id=self._node_id,
                node_role="controller",
            )
        )

    async def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None

            await self._logger.log(
                ServerDebug(
                    message="DNS responder stopped",
                    node_id=self._node_id,
                    node_role="controller",
                )
            )
