"""DNS interception — answers portal-detection probes with the gateway address.

Connectivity-check names resolve to the gateway only while the asking client
is not admitted, which is what makes the client OS open its captive-portal
browser. Landing names always resolve to the gateway. Everything else is
relayed to the upstream resolver, or answered NXDOMAIN when none is set.
"""

from __future__ import annotations

import logging
from typing import Protocol

from scapy.layers.dns import DNS, DNSRR

from captivegate.errors import CaptiveGateError, ResolverUnavailable
from captivegate.dns.hijack import HijackKind, HijackTable
from captivegate.policy.models import RedirectPolicy
from captivegate.session.store import SessionStore

logger = logging.getLogger(__name__)

_QTYPE_A = 1
_QTYPE_AAAA = 28

_RCODE_SERVFAIL = 2
_RCODE_NXDOMAIN = 3

# Short so clients re-resolve through the upstream right after admission
HIJACK_TTL = 1


class Forwarder(Protocol):
    def forward(self, query: bytes) -> bytes: ...


class DnsInterceptor:
    """Turns one DNS query into one DNS reply."""

    def __init__(
        self,
        policy: RedirectPolicy,
        store: SessionStore,
        upstream: Forwarder | None = None,
    ) -> None:
        self._policy = policy
        self._store = store
        self._upstream = upstream
        self._table = HijackTable(policy.hijacked_domains, policy.landing_domains)
        self._answer_qtype = _QTYPE_AAAA if ":" in policy.gateway_ip else _QTYPE_A

    def handle(self, data: bytes, client: str) -> bytes | None:
        """Return the reply for ``data`` from ``client``, or None to drop it."""
        try:
            query = DNS(data)
        except Exception as e:
            logger.debug("Dropping unparseable DNS packet from %s: %s", client, e)
            return None

        if query.qr != 0 or not query.qdcount:
            return None
        try:
            question = query.qd[0]
        except (IndexError, TypeError):
            return None
        qname = _decode_name(question.qname)
        admitted = self._store.is_admitted(client)

        if admitted and self._policy.sliding_ttl:
            self._slide(client)

        kind = self._table.match(qname)
        if kind == HijackKind.LANDING or (
            kind == HijackKind.CONNECTIVITY
            and (not admitted or self._policy.hijack_after_admission)
        ):
            logger.debug("Hijacking %s for %s", qname, client)
            return self._hijack_reply(query, question)

        if self._upstream is None:
            logger.debug("No upstream for %s from %s, answering NXDOMAIN", qname, client)
            return self._error_reply(query, _RCODE_NXDOMAIN)

        try:
            answer = self._upstream.forward(data)
        except ResolverUnavailable as e:
            logger.warning("Upstream lookup of %s failed: %s", qname, e)
            return self._error_reply(query, _RCODE_SERVFAIL)
        logger.debug(
            "Forwarded %s for %s (rcode %s)",
            qname,
            client,
            answer[3] & 0x0F if len(answer) >= 4 else "?",
        )
        return answer

    def _hijack_reply(self, query: DNS, question) -> bytes:
        answer = None
        if question.qtype == self._answer_qtype:
            answer = DNSRR(
                rrname=question.qname,
                type=self._answer_qtype,
                rclass=1,
                ttl=HIJACK_TTL,
                rdata=self._policy.gateway_ip,
            )
        # Other record types get an empty NOERROR so the client falls back to A
        reply = DNS(
            id=query.id,
            qr=1,
            opcode=query.opcode,
            aa=1,
            rd=query.rd,
            ra=1,
            rcode=0,
            qd=query.qd,
        )
        if answer is not None:
            reply.an = answer
        return bytes(reply)

    @staticmethod
    def _error_reply(query: DNS, rcode: int) -> bytes:
        reply = DNS(
            id=query.id,
            qr=1,
            opcode=query.opcode,
            rd=query.rd,
            ra=1,
            rcode=rcode,
            qd=query.qd,
        )
        return bytes(reply)

    def _slide(self, client: str) -> None:
        grant = self._store.get(client)
        if grant is None:
            return
        # Refresh at most once per half-TTL to keep store writes rare
        if grant.remaining(self._store.now()) >= grant.ttl / 2:
            return
        try:
            self._store.touch(client)
        except CaptiveGateError as e:
            logger.warning("Could not refresh grant for %s: %s", client, e)


def _decode_name(qname: bytes | str) -> str:
    if isinstance(qname, bytes):
        qname = qname.decode("ascii", errors="ignore")
    return qname.rstrip(".").lower()
