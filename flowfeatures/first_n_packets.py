"""Per-packet features of the first packets of each five-tuple flow."""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass
from typing import Iterable, TextIO

from .headers import Headers, flow_key, parse_headers
from .pcapfile import LinkType, Packet, PcapError, PcapReader, open_pcap

# Field kinds: 0 numeric, 1 set-like, 2 categorical.
FIELD_TYPES = "0 0 2 0 0 0 2"
NUM_FIELDS = 7

_SUPPORTED_LINK_TYPES = (LinkType.ETHERNET, LinkType.RAW)
_PROG = "first_n_packets"
_U32 = 0xFFFFFFFF


@dataclass(frozen=True)
class PacketFields:
    """Features taken from one packet."""

    ip_len: int = 0
    ip_ttl: int = 0
    tcp_flags: int = 0
    tcp_window: int = 0
    tcp_seq: int = 0
    tcp_ack_seq: int = 0
    application_type: int = 0


def extract_fields(headers: Headers) -> PacketFields:
    """Take the features of a packet that has an IPv4 header."""
    ip = headers.ipv4
    if ip is None:
        raise ValueError("packet has no IPv4 header")
    tcp = headers.tcp
    if tcp is None:
        return PacketFields(ip_len=ip.tot_len, ip_ttl=ip.ttl)
    return PacketFields(
        ip_len=ip.tot_len,
        ip_ttl=ip.ttl,
        tcp_flags=tcp.flags & 0xFF,
        tcp_window=tcp.window,
        tcp_seq=tcp.seq,
        tcp_ack_seq=tcp.ack_seq,
    )


def format_fields(fields: PacketFields, previous: PacketFields) -> str:
    """One output line; sequence numbers are given as 32-bit differences."""
    seq_diff = 0 if previous.tcp_seq == 0 else (fields.tcp_seq - previous.tcp_seq) & _U32
    ack_diff = (
        0 if previous.tcp_ack_seq == 0
        else (fields.tcp_ack_seq - previous.tcp_ack_seq) & _U32
    )
    return " ".join(
        str(value)
        for value in (
            fields.ip_len,
            fields.ip_ttl,
            fields.tcp_flags,
            fields.tcp_window,
            seq_diff,
            ack_diff,
            fields.application_type,
        )
    )


class FlowCollector:
    """Keeps the features of the first ``pkts_per_flow`` packets of each flow."""

    def __init__(self, pkts_per_flow: int) -> None:
        self.pkts_per_flow = pkts_per_flow
        self.flows: dict[str, list[PacketFields]] = {}
        self.total_pkts = 0
        self.total_skipped = 0

    def one_packet(self, key: str, headers: Headers) -> None:
        """Record a packet of flow ``key`` if the flow still needs packets."""
        flow = self.flows.setdefault(key, [])
        if len(flow) < self.pkts_per_flow:
            flow.append(extract_fields(headers))
        self.total_pkts += 1

    def skip_one(self) -> None:
        """Count a packet that belongs to no flow."""
        self.total_skipped += 1

    def _complete_flows(self) -> Iterable[list[PacketFields]]:
        return (flow for flow in self.flows.values() if len(flow) >= self.pkts_per_flow)

    def dump_header(self, out: TextIO) -> None:
        """Write the number of complete flows, the field count and field kinds."""
        count = sum(1 for _ in self._complete_flows())
        out.write(f"{count} {NUM_FIELDS}\n{FIELD_TYPES}\n")

    def dump(self, out: TextIO) -> None:
        """Write each complete flow as a block of lines ended by a blank line."""
        for flow in self._complete_flows():
            previous = PacketFields()
            for fields in flow:
                out.write(format_fields(fields, previous) + "\n")
                previous = fields
            out.write("\n")


def _check_link_type(link_type: LinkType | int) -> None:
    if link_type not in _SUPPORTED_LINK_TYPES:
        raise PcapError(f"Unsupported link-layer type: {int(link_type)}")


def process(
    packets: Iterable[Packet], link_type: LinkType | int, collector: FlowCollector
) -> FlowCollector:
    """Feed every packet to ``collector`` and return it."""
    _check_link_type(link_type)
    has_ether = link_type == LinkType.ETHERNET
    for packet in packets:
        headers = parse_headers(packet.data, has_ether)
        if headers.has_transport():
            collector.one_packet(flow_key(headers), headers)
        else:
            collector.skip_one()
    return collector


def _atoi(text: str) -> int:
    match = re.match(r"\s*([+-]?\d+)", text)
    value = int(match.group(1)) if match else 0
    return value % (1 << 64)


def _run(reader: PcapReader, pkts_per_flow: int, outfile_name: str) -> int:
    if reader.link_type not in _SUPPORTED_LINK_TYPES:
        print(f"Unsupported link-layer type: {int(reader.link_type)}", file=sys.stderr)
        return 1
    try:
        out = open(outfile_name, "w", newline="")
    except OSError:
        print(f'Failed to open "{outfile_name}" for writing', file=sys.stderr)
        return 1
    with out:
        collector = process(reader, reader.link_type, FlowCollector(pkts_per_flow))
        collector.dump_header(out)
        collector.dump(out)
    return 0


def main(argv=None) -> int:
    """Command entry point: ``first_n_packets <n> <input pcap> <output file>``."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 3:
        print(f"Usage: {_PROG} <packets per flow> <input pcap file> <output csv file>")
        return 0
    count_text, infile_name, outfile_name = args
    pkts_per_flow = _atoi(count_text)
    try:
        with open_pcap(infile_name) as reader:
            return _run(reader, pkts_per_flow, outfile_name)
    except PcapError as exc:
        print(f'Failed to open "{infile_name}" for reading: {exc}', file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())