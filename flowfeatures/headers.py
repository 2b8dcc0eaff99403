"""Decoding of Ethernet, IPv4, TCP and UDP headers from raw frames."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from ipaddress import IPv4Address

ETH_P_IP = 0x0800
IPPROTO_TCP = 6
IPPROTO_UDP = 17

_ETH = struct.Struct("!6s6sH")
_IPV4 = struct.Struct("!BBHHHBBH4s4s")
_TCP = struct.Struct("!HHIIBBHHH")
_UDP = struct.Struct("!HHHH")


@dataclass(frozen=True)
class EthernetHeader:
    """An Ethernet II header."""

    dest: bytes
    source: bytes
    proto: int

    SIZE = _ETH.size

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> EthernetHeader:
        dest, source, proto = _ETH.unpack_from(data, offset)
        return cls(dest, source, proto)


@dataclass(frozen=True)
class IPv4Header:
    """The fixed part of an IPv4 header."""

    version: int
    ihl: int
    tos: int
    tot_len: int
    id: int
    frag_off: int
    ttl: int
    protocol: int
    check: int
    saddr: IPv4Address
    daddr: IPv4Address

    SIZE = _IPV4.size

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> IPv4Header:
        (ver_ihl, tos, tot_len, ident, frag_off, ttl, protocol, check,
         saddr, daddr) = _IPV4.unpack_from(data, offset)
        return cls(
            version=ver_ihl >> 4,
            ihl=ver_ihl & 0x0F,
            tos=tos,
            tot_len=tot_len,
            id=ident,
            frag_off=frag_off,
            ttl=ttl,
            protocol=protocol,
            check=check,
            saddr=IPv4Address(saddr),
            daddr=IPv4Address(daddr),
        )


@dataclass(frozen=True)
class TcpHeader:
    """The fixed part of a TCP header; ``flags`` is the flag byte (CWR..FIN)."""

    source: int
    dest: int
    seq: int
    ack_seq: int
    doff: int
    flags: int
    window: int
    check: int
    urg_ptr: int

    SIZE = _TCP.size

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> TcpHeader:
        (source, dest, seq, ack_seq, doff_byte, flags, window, check,
         urg_ptr) = _TCP.unpack_from(data, offset)
        return cls(source, dest, seq, ack_seq, doff_byte >> 4, flags,
                   window, check, urg_ptr)


@dataclass(frozen=True)
class UdpHeader:
    """A UDP header."""

    source: int
    dest: int
    length: int
    check: int

    SIZE = _UDP.size

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> UdpHeader:
        return cls(*_UDP.unpack_from(data, offset))


@dataclass(frozen=True)
class Headers:
    """The layers found in one frame; absent layers are None."""

    eth: EthernetHeader | None = None
    ipv4: IPv4Header | None = None
    tcp: TcpHeader | None = None
    udp: UdpHeader | None = None

    def has_transport(self) -> bool:
        """True when the frame carries IPv4 with a TCP or UDP header."""
        return self.ipv4 is not None and (self.tcp is not None or self.udp is not None)

    @property
    def transport(self) -> TcpHeader | UdpHeader | None:
        return self.tcp if self.tcp is not None else self.udp


def parse_headers(data: bytes, has_ether: bool) -> Headers:
    """Decode the headers at the start of ``data``.

    Parsing stops at the first layer that is missing, truncated or of an
    unsupported kind; the layers decoded before it are kept.
    """
    eth = None
    offset = 0
    if has_ether:
        if len(data) < EthernetHeader.SIZE:
            return Headers()
        eth = EthernetHeader.unpack(data)
        if eth.proto != ETH_P_IP:
            return Headers(eth=eth)
        offset = EthernetHeader.SIZE

    if len(data) - offset < IPv4Header.SIZE or data[offset] >> 4 != 4:
        return Headers(eth=eth)
    ipv4 = IPv4Header.unpack(data, offset)
    offset += ipv4.ihl * 4

    if ipv4.protocol == IPPROTO_TCP and offset + TcpHeader.SIZE <= len(data):
        return Headers(eth=eth, ipv4=ipv4, tcp=TcpHeader.unpack(data, offset))
    if ipv4.protocol == IPPROTO_UDP and offset + UdpHeader.SIZE <= len(data):
        return Headers(eth=eth, ipv4=ipv4, udp=UdpHeader.unpack(data, offset))
    return Headers(eth=eth, ipv4=ipv4)


def flow_key(headers: Headers) -> str:
    """Return the five-tuple key ``sip-dip-proto-sport-dport`` of a packet."""
    transport = headers.transport
    if headers.ipv4 is None or transport is None:
        raise ValueError("packet has no IPv4 TCP or UDP headers")
    ip = headers.ipv4
    return f"{ip.saddr}-{ip.daddr}-{ip.protocol}-{transport.source}-{transport.dest}"