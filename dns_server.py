"""DNS server that refuses blocked hosts while the controller says so."""

import logging
import socket
import sys
from typing import Optional

from dnslib import AAAA, QTYPE, RR, A, DNSError, DNSRecord

from config import (
    BLOCK_IP,
    BLOCK_IPV6,
    DNS_HOST,
    DNS_PORT,
    UPSTREAM_DNS,
    UPSTREAM_DNS_PORT,
)
from controller import BlockingController

IS_WINDOWS = sys.platform == "win32"

logger = logging.getLogger(__name__)


class FocusBlockerDNS:
    """DNS server that sinkholes hosts the blocking controller currently blocks."""

    def __init__(
        self,
        controller: BlockingController,
        host: str = DNS_HOST,
        port: int = DNS_PORT,
        upstream: str = UPSTREAM_DNS,
    ):
        self.controller = controller
        self.host = host
        self.port = port
        self.upstream = upstream
        self.socket: Optional[socket.socket] = None
        self.running = False

    def is_domain_blocked(self, domain: str) -> bool:
        """
        Check if a domain should be blocked right now.

        Matches the domain itself and any subdomains, unless a temporary
        unblock covers it.
        """
        # Remove trailing dot if present (DNS FQDN format)
        return self.controller.is_host_blocked(domain.rstrip("."))

    def resolve_upstream(self, request: DNSRecord) -> Optional[DNSRecord]:
        """Forward DNS request to upstream server."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.settimeout(3)
            sock.sendto(request.pack(), (self.upstream, UPSTREAM_DNS_PORT))
            response_data, _ = sock.recvfrom(4096)
            return DNSRecord.parse(response_data)
        except (OSError, DNSError) as e:
            logger.debug("Upstream %s failed: %s", self.upstream, e)
            return None
        finally:
            sock.close()

    def create_blocked_response(self, request: DNSRecord) -> DNSRecord:
        """
        Create a DNS response that blocks the domain.

        - For A queries: return 0.0.0.0
        - For AAAA queries: return ::
        - For other types (HTTPS/SVCB/CNAME/etc): return NXDOMAIN
        """
        reply = request.reply()
        qname = request.q.qname

        qtype = QTYPE[request.q.qtype]
        if qtype == "A":
            reply.add_answer(RR(qname, QTYPE.A, rdata=A(BLOCK_IP), ttl=60))
        elif qtype == "AAAA":
            reply.add_answer(RR(qname, QTYPE.AAAA, rdata=AAAA(BLOCK_IPV6), ttl=60))
        elif qtype == "ANY":
            reply.add_answer(RR(qname, QTYPE.A, rdata=A(BLOCK_IP), ttl=60))
            reply.add_answer(RR(qname, QTYPE.AAAA, rdata=AAAA(BLOCK_IPV6), ttl=60))
        else:
            # Strongest "block": claim the name doesn't exist for this record type.
            reply.header.rcode = 3  # NXDOMAIN

        return reply

    def handle_request(self, data: bytes, addr: tuple) -> bytes:
        """Handle incoming DNS request."""
        try:
            request = DNSRecord.parse(data)
        except DNSError:
            logger.debug("Dropping malformed query from %s", addr)
            return b""

        qname = str(request.q.qname)
        if self.is_domain_blocked(qname):
            logger.debug("Blocked %s for %s", qname, addr)
            response = self.create_blocked_response(request)
        else:
            response = self.resolve_upstream(request)
            if response is None:
                # If upstream fails, return SERVFAIL
                response = request.reply()
                response.header.rcode = 2  # SERVFAIL

        return response.pack()

    def start(self):
        """Start the DNS server. Blocks until `stop` is called."""
        self.socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        try:
            self.socket.bind((self.host, self.port))
        except PermissionError:
            hint = "Run as Administrator." if IS_WINDOWS else "Run with sudo."
            raise PermissionError(f"Cannot bind to port {self.port}. {hint}")
        except OSError as e:
            if "Address already in use" in str(e):
                raise OSError(
                    f"Port {self.port} is already in use. "
                    "Another DNS server may be running."
                )
            raise

        self.running = True
        logger.info("DNS server listening on %s:%s", self.host, self.port)

        while self.running:
            try:
                self.socket.settimeout(1.0)
                try:
                    data, addr = self.socket.recvfrom(4096)
                except socket.timeout:
                    continue

                response = self.handle_request(data, addr)
                if response:
                    self.socket.sendto(response, addr)

            except OSError as e:
                if self.running:
                    logger.warning("DNS socket error: %s", e)

    def stop(self):
        """Stop the DNS server."""
        self.running = False

        if self.socket:
            self.socket.close()
            self.socket = None
