"""Per-epoch flow statistics of a packet capture, written as CSV rows."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Iterable, Mapping, TextIO

from .headers import Headers, flow_key, parse_headers
from .pcapfile import LinkType, Packet, PcapError, PcapReader, open_pcap

QUANTILES = (
    0.00, 0.05, 0.10, 0.15, 0.20, 0.25, 0.30, 0.35, 0.40, 0.45, 0.50, 0.55,
    0.60, 0.65, 0.70, 0.75, 0.80, 0.85, 0.90, 0.95, 0.99, 0.999, 1.00,
)
QUANTILE_LABELS = (
    "q000", "q005", "q010", "q015", "q020", "q025", "q030", "q035", "q040",
    "q045", "q050", "q055", "q060", "q065", "q070", "q075", "q080", "q085",
    "q090", "q095", "q099", "q0999", "q100",
)
TOP_FRACTIONS = (0.001, 0.01, 0.05, 0.10)
TOP_LABELS = ("Top0.1Percent", "Top1Percent", "Top5Percent", "Top10Percent")

_SUPPORTED_LINK_TYPES = (LinkType.ETHERNET, LinkType.RAW)
_PROG = "pcap_stats"


@dataclass
class FlowState:
    """Packet and byte counts of one flow within an epoch."""

    pkts: int = 0
    bytes: int = 0


def churn(previous: Mapping, current: Mapping) -> float:
    """Fraction of the keys of ``previous`` that are absent from ``current``."""
    if not previous:
        return 0.0
    gone = sum(1 for key in previous if key not in current)
    return gone / len(previous)


def _pick_quantiles(ordered: list[tuple[str, FlowState]]) -> list[FlowState]:
    n = len(ordered)
    return [ordered[min(int(n * q), n - 1)][1] for q in QUANTILES]


class EpochStats:
    """Flow counters of the current epoch plus what churn needs of the last one."""

    def __init__(self) -> None:
        self.current_flows: dict[str, FlowState] = {}
        self.previous_flows: dict[str, FlowState] = {}
        self.previous_top: list[dict[str, FlowState]] = [{} for _ in TOP_FRACTIONS]
        self.total_pkts = 0
        self.total_bytes = 0
        self.total_skipped = 0

    def one_packet(self, key: str, nbytes: int) -> None:
        """Count one packet of ``nbytes`` bytes for flow ``key``."""
        flow = self.current_flows.setdefault(key, FlowState())
        flow.pkts += 1
        flow.bytes += nbytes
        self.total_pkts += 1
        self.total_bytes += nbytes

    def skip_one(self) -> None:
        """Count a packet that belongs to no flow."""
        self.total_skipped += 1

    def dump_header(self, out: TextIO) -> None:
        out.write("time,stat,value\n")

    def dump(self, out: TextIO, time: float) -> None:
        """Write the statistics of the current epoch stamped with ``time``."""
        flows = list(self.current_flows.items())
        n = len(flows)
        if flows:
            flows.sort(key=lambda item: item[1].bytes)
            bytes_quantiles = _pick_quantiles(flows)
            flows.sort(key=lambda item: item[1].pkts)
            pkts_quantiles = _pick_quantiles(flows)
        else:
            bytes_quantiles = pkts_quantiles = [FlowState() for _ in QUANTILES]

        top_churn = []
        for i, fraction in enumerate(TOP_FRACTIONS):
            top = dict(flows[n - int(n * fraction):])
            top_churn.append(churn(self.previous_top[i], top))
            self.previous_top[i] = top

        global_churn = churn(self.previous_flows, self.current_flows)

        stamp = f"{time:.6f}"

        def row(stat: str, value: object) -> None:
            out.write(f"{stamp},{stat},{value}\n")

        row("numFlows", n)
        row("totalPkts", self.total_pkts)
        row("totalBytes", self.total_bytes)
        for label, pkts_q, bytes_q in zip(QUANTILE_LABELS, pkts_quantiles, bytes_quantiles):
            row(f"{label}pkts", pkts_q.pkts)
            row(f"{label}bytes", bytes_q.bytes)
        row("churnGlobal", f"{global_churn:.6f}")
        for label, value in zip(TOP_LABELS, top_churn):
            row(f"churn{label}", f"{value:.6f}")

    def next_epoch(self) -> None:
        """Start a new epoch; the current flows become the previous ones."""
        self.previous_flows = self.current_flows
        self.current_flows = {}
        self.total_pkts = 0
        self.total_bytes = 0
        self.total_skipped = 0


def _check_link_type(link_type: LinkType | int) -> None:
    if link_type not in _SUPPORTED_LINK_TYPES:
        raise PcapError(f"Unsupported link-layer type: {int(link_type)}")


def process(
    packets: Iterable[Packet],
    link_type: LinkType | int,
    out: TextIO,
    epoch_duration: float = 1.0,
) -> EpochStats:
    """Write per-epoch statistics of ``packets`` to ``out`` as CSV."""
    _check_link_type(link_type)
    if epoch_duration <= 0:
        raise ValueError("epoch duration must be positive")
    has_ether = link_type == LinkType.ETHERNET
    stats = EpochStats()
    stats.dump_header(out)
    next_epoch = 0.0

    for packet in packets:
        now = packet.timestamp()
        if next_epoch == 0.0:
            next_epoch = now + epoch_duration
        elif now >= next_epoch:
            stats.dump(out, next_epoch)
            stats.next_epoch()
            while now >= next_epoch:
                next_epoch += epoch_duration

        headers: Headers = parse_headers(packet.data, has_ether)
        if headers.has_transport():
            stats.one_packet(flow_key(headers), headers.ipv4.tot_len)
        else:
            stats.skip_one()

    stats.dump(out, next_epoch)
    return stats


def _run(reader: PcapReader, outfile_name: str) -> int:
    if reader.link_type not in _SUPPORTED_LINK_TYPES:
        print(f"Unsupported link-layer type: {int(reader.link_type)}", file=sys.stderr)
        return 1
    try:
        out = open(outfile_name, "w", newline="")
    except OSError:
        print(f'Failed to open "{outfile_name}" for writing', file=sys.stderr)
        return 1
    with out:
        process(reader, reader.link_type, out)
    return 0


def main(argv=None) -> int:
    """Command entry point: ``pcap_stats <input pcap file> <output csv file>``."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 2:
        print(f"Usage: {_PROG} <input pcap file> <output csv file>")
        return 0
    infile_name, outfile_name = args
    try:
        with open_pcap(infile_name) as reader:
            return _run(reader, outfile_name)
    except PcapError as exc:
        print(f'Failed to open "{infile_name}" for reading: {exc}', file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())