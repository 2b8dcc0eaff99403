"""Flow statistics and per-packet features from pcap captures."""

__version__ = "0.1.0"

__all__ = ["headers", "pcapfile", "pcap_stats", "first_n_packets"]