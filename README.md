# flowfeatures

This package reads classic pcap capture files and summarises the IPv4
TCP/UDP flows in them. A flow is keyed by its five-tuple: source address,
destination address, protocol, source port and destination port. The package
handles captures with Ethernet or raw IP link layers. It needs no third-party
libraries.

## Installation

```
pip install .
```

## Commands

### `pcap-stats`

```
pcap-stats <input pcap file> <output csv file>
```

This command splits the capture into one-second epochs. The first epoch
starts at the time stamp of the first packet. For each epoch it writes rows
of the form `time,stat,value`, where `time` is the end of the epoch with six
decimal places. The statistics are:

- `numFlows`, `totalPkts`, `totalBytes`. Bytes are taken from the IPv4 total
  length field.
- Quantiles of the per-flow packet and byte counts: `q000pkts`, `q000bytes`,
  `q005pkts`, ... up to `q100pkts` and `q100bytes`. The points are 0 to 95 in
  steps of 5 per cent, then 99, 99.9 and 100 per cent.
- `churnGlobal`: the fraction of the previous epoch's flows that do not appear
  in this epoch.
- `churnTop0.1Percent`, `churnTop1Percent`, `churnTop5Percent`,
  `churnTop10Percent`: the same churn figure, counted over only the flows with
  the most packets.

With the wrong number of arguments, the command prints a usage line and exits
with status 0.

### `first-n-packets`

```
first-n-packets <packets per flow> <input pcap file> <output file>
```

This command keeps the first *n* packets of every flow. A flow is written only
if it reached *n* packets. The output has the following parts:

1. A line with the number of flows written and the number of fields (7).
2. A line of field kinds, `0 0 2 0 0 0 2`. Here 0 means numeric and 2 means
   categorical.
3. One block per flow. Each block has one line per packet and ends with a
   blank line.

Each packet line holds:

```
ip_len ip_ttl tcp_flags tcp_window seq_diff ack_seq_diff application_type
```

`seq_diff` and `ack_seq_diff` are the 32-bit differences from the previous
packet of the same flow. Each is 0 when the previous value is 0, which always
happens for the first packet. For UDP packets, all TCP fields are 0.
`application_type` is always 0.

## Library use

```python
import sys

from flowfeatures.pcapfile import open_pcap
from flowfeatures.pcap_stats import process

with open_pcap("capture.pcap") as reader:
    process(reader, reader.link_type, sys.stdout, 1.0)
```

The modules are:

- `flowfeatures.pcapfile`
  - `open_pcap(path)` is a context manager that yields a `PcapReader`.
  - A `PcapReader` iterates over `Packet` objects and exposes `link_type`,
    `snaplen` and `version`.
  - Problems with the file raise `PcapError`.
- `flowfeatures.headers`
  - `parse_headers(data, has_ether)` decodes Ethernet, IPv4, TCP and UDP
    headers into a `Headers` object.
  - `flow_key(headers)` builds the key string `sip-dip-proto-sport-dport`.
- `flowfeatures.pcap_stats`
  - `EpochStats` holds the per-epoch counters.
  - `churn(previous, current)` computes the churn fraction.
  - `process(packets, link_type, out, epoch_duration)` writes the CSV.
- `flowfeatures.first_n_packets`
  - `FlowCollector` keeps the first packets of each flow.
  - `extract_fields` and `format_fields` build the packet lines.
  - `process(packets, link_type, collector)` fills the collector.

Both `process` functions raise `PcapError` for link types other than Ethernet
and raw IP.

## Limitations

- The package reads only classic pcap files. It cannot read pcapng files, and
  it cannot capture live traffic.
- It counts only IPv4 packets that carry TCP or UDP. Other packets, including
  IPv6, are skipped.
- Reading stops at the first truncated or damaged record.