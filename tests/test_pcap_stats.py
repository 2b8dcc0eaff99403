import io
import struct
from ipaddress import IPv4Address

import pytest

from flowfeatures.pcap_stats import (
    QUANTILES,
    TOP_FRACTIONS,
    EpochStats,
    FlowState,
    churn,
    main,
    process,
)
from flowfeatures.pcapfile import LinkType, Packet, PcapError


def tcp_frame(src, dst, sport, dport, payload_len=0, ether=True, ethertype=0x0800):
    tcp = struct.pack("!HHIIBBHHH", sport, dport, 1000, 2000, 5 << 4, 0x18, 512, 0, 0)
    tot_len = 20 + len(tcp) + payload_len
    ip = struct.pack(
        "!BBHHHBBH4s4s", 0x45, 0, tot_len, 0, 0, 64, 6, 0,
        IPv4Address(src).packed, IPv4Address(dst).packed,
    )
    frame = ip + tcp + b"\0" * payload_len
    if ether:
        frame = b"\x02" * 6 + b"\x04" * 6 + struct.pack("!H", ethertype) + frame
    return frame


def write_pcap(path, packets, link_type=1):
    with open(path, "wb") as f:
        f.write(struct.pack("<IHHiIII", 0xA1B2C3D4, 2, 4, 0, 0, 65535, link_type))
        for sec, usec, data in packets:
            f.write(struct.pack("<IIII", sec, usec, len(data), len(data)))
            f.write(data)


def rows(text):
    lines = text.splitlines()
    return [line.split(",") for line in lines[1:]]


def stats_of(text):
    return {stat: value for _, stat, value in (line.split(",") for line in text.splitlines())}


def test_churn_of_empty_previous_is_zero():
    assert churn({}, {"a": FlowState()}) == 0.0


def test_churn_counts_vanished_keys():
    previous = {"a": FlowState(), "b": FlowState()}
    assert churn(previous, {"a": FlowState()}) == 0.5
    assert churn(previous, previous) == 0.0
    assert churn(previous, {}) == 1.0


def test_dump_header():
    out = io.StringIO()
    EpochStats().dump_header(out)
    assert out.getvalue() == "time,stat,value\n"


def test_dump_totals_and_extreme_quantiles():
    sizes = {"a": [100], "b": [200, 200], "c": [300, 300, 300]}
    stats = EpochStats()
    for key, packets in sizes.items():
        for size in packets:
            stats.one_packet(key, size)
    out = io.StringIO()
    stats.dump(out, 1.5)
    values = stats_of(out.getvalue())
    assert values["numFlows"] == str(len(sizes))
    assert values["totalPkts"] == str(sum(len(v) for v in sizes.values()))
    assert values["totalBytes"] == str(sum(sum(v) for v in sizes.values()))
    assert values["q000bytes"] == str(min(sum(v) for v in sizes.values()))
    assert values["q100bytes"] == str(max(sum(v) for v in sizes.values()))
    assert values["q000pkts"] == str(min(len(v) for v in sizes.values()))
    assert values["q100pkts"] == str(max(len(v) for v in sizes.values()))


def test_dump_line_layout_and_time_format():
    stats = EpochStats()
    stats.one_packet("k", 40)
    out = io.StringIO()
    stats.dump(out, 1.5)
    lines = out.getvalue().splitlines()
    assert len(lines) == 3 + 2 * len(QUANTILES) + 1 + len(TOP_FRACTIONS)
    assert all(line.startswith("1.500000,") for line in lines)
    assert lines[0].split(",")[1] == "numFlows"
    assert lines[-1].split(",")[1] == "churnTop10Percent"


def test_dump_of_empty_epoch_reports_zeros():
    out = io.StringIO()
    EpochStats().dump(out, 2.0)
    values = stats_of(out.getvalue())
    assert values["numFlows"] == "0"
    assert values["q050pkts"] == "0"
    assert values["q050bytes"] == "0"
    assert values["churnGlobal"] == "0.000000"


def test_churn_between_epochs():
    stats = EpochStats()
    stats.one_packet("a", 10)
    stats.dump(io.StringIO(), 1.0)
    stats.next_epoch()
    stats.one_packet("b", 10)
    out = io.StringIO()
    stats.dump(out, 2.0)
    assert stats_of(out.getvalue())["churnGlobal"] == "1.000000"


def test_identical_epochs_have_no_churn():
    stats = EpochStats()
    keys = [f"flow{i}" for i in range(20)]
    for i, key in enumerate(keys):
        for _ in range(i + 1):
            stats.one_packet(key, 50)
    stats.dump(io.StringIO(), 1.0)
    stats.next_epoch()
    for i, key in enumerate(keys):
        for _ in range(i + 1):
            stats.one_packet(key, 50)
    out = io.StringIO()
    stats.dump(out, 2.0)
    churn_values = [v for k, v in stats_of(out.getvalue()).items() if k.startswith("churn")]
    assert len(churn_values) == 1 + len(TOP_FRACTIONS)
    assert set(churn_values) == {"0.000000"}


def test_next_epoch_resets_totals():
    stats = EpochStats()
    stats.one_packet("a", 10)
    stats.skip_one()
    stats.next_epoch()
    assert (stats.total_pkts, stats.total_bytes, stats.total_skipped) == (0, 0, 0)
    assert stats.current_flows == {}
    assert stats.previous_flows == {"a": FlowState(1, 10)}


def test_process_splits_epochs():
    a = tcp_frame("10.0.0.1", "10.0.0.2", 1234, 80)
    b = tcp_frame("10.0.0.3", "10.0.0.2", 4321, 80)
    packets = [
        Packet(10, 0, a, len(a)),
        Packet(10, 500000, b, len(b)),
        Packet(11, 200000, a, len(a)),
    ]
    out = io.StringIO()
    process(packets, LinkType.ETHERNET, out)
    text = out.getvalue()
    assert text.splitlines()[0] == "time,stat,value"
    table = rows(text)
    times = sorted({t for t, _, _ in table})
    assert times == ["11.000000", "12.000000"]
    first = {s: v for t, s, v in table if t == "11.000000"}
    second = {s: v for t, s, v in table if t == "12.000000"}
    assert first["numFlows"] == "2"
    assert second["numFlows"] == "1"
    assert second["churnGlobal"] == "0.500000"


def test_process_counts_ip_total_length_and_skips_non_ip():
    frame = tcp_frame("10.0.0.1", "10.0.0.2", 1, 2, payload_len=60)
    other = tcp_frame("10.0.0.1", "10.0.0.2", 1, 2, ethertype=0x86DD)
    out = io.StringIO()
    stats = process(
        [Packet(5, 0, frame, len(frame)), Packet(5, 1, other, len(other))],
        LinkType.ETHERNET,
        out,
    )
    assert stats.total_skipped == 1
    values = stats_of(out.getvalue().split("\n", 1)[1])
    assert values["totalPkts"] == "1"
    assert values["totalBytes"] == str(len(frame) - 14)


def test_process_raw_link_type():
    frame = tcp_frame("192.168.1.1", "192.168.1.2", 5, 6, ether=False)
    out = io.StringIO()
    stats = process([Packet(1, 0, frame, len(frame))], LinkType.RAW, out)
    assert list(stats.current_flows) == ["192.168.1.1-192.168.1.2-6-5-6"]


def test_process_rejects_unsupported_link_type():
    with pytest.raises(PcapError):
        process([], 113, io.StringIO())


def test_main_usage(capsys):
    assert main([]) == 0
    assert capsys.readouterr().out.startswith("Usage:")


def test_main_missing_input(tmp_path, capsys):
    assert main([str(tmp_path / "missing.pcap"), str(tmp_path / "out.csv")]) == 1
    assert "Failed to open" in capsys.readouterr().err


def test_main_unsupported_link_type(tmp_path, capsys):
    infile = tmp_path / "in.pcap"
    write_pcap(infile, [], link_type=113)
    assert main([str(infile), str(tmp_path / "out.csv")]) == 1
    assert "Unsupported link-layer type: 113" in capsys.readouterr().err


def test_main_end_to_end(tmp_path):
    infile = tmp_path / "in.pcap"
    outfile = tmp_path / "out.csv"
    a = tcp_frame("10.0.0.1", "10.0.0.2", 1234, 80)
    b = tcp_frame("10.0.0.3", "10.0.0.2", 4321, 80)
    write_pcap(infile, [(100, 0, a), (100, 1000, b)])
    assert main([str(infile), str(outfile)]) == 0
    text = outfile.read_text()
    assert text.splitlines()[0] == "time,stat,value"
    values = {s: v for _, s, v in rows(text)}
    assert values["numFlows"] == "2"
    assert values["totalPkts"] == "2"