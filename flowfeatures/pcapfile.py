"""Reading of classic pcap capture files."""

from __future__ import annotations

import struct
from contextlib import contextmanager
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Iterator

_MAGIC_USEC = 0xA1B2C3D4
_MAGIC_NSEC = 0xA1B23C4D
_PCAPNG_MAGIC = 0x0A0D0D0A
_MAX_SNAPLEN = 262144
_LINKTYPE_MASK = 0x03FFFFFF
_RAW_ALIASES = {12, 14, 101}


class PcapError(Exception):
    """Raised when a capture file cannot be opened or understood."""


class LinkType(IntEnum):
    """Link-layer types the analysers understand."""

    ETHERNET = 1
    RAW = 101


@dataclass(frozen=True)
class Packet:
    """One captured packet with its time stamp in seconds and microseconds."""

    ts_sec: int
    ts_usec: int
    data: bytes
    orig_len: int

    def timestamp(self) -> float:
        """Capture time in seconds as a float."""
        return self.ts_sec + self.ts_usec / 1000000.0


def _normalise_link_type(value: int) -> LinkType | int:
    value &= _LINKTYPE_MASK
    if value == LinkType.ETHERNET:
        return LinkType.ETHERNET
    if value in _RAW_ALIASES:
        return LinkType.RAW
    return value


class PcapReader:
    """Iterate over the packets of a pcap stream.

    Iteration ends at the first truncated or damaged record.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        header = stream.read(24)
        if len(header) < 4:
            raise PcapError("truncated capture file header")
        for order in ("<", ">"):
            (magic,) = struct.unpack(order + "I", header[:4])
            if magic in (_MAGIC_USEC, _MAGIC_NSEC):
                break
        else:
            if struct.unpack("<I", header[:4])[0] == _PCAPNG_MAGIC:
                raise PcapError("pcapng files are not supported")
            raise PcapError("unknown file format")
        if len(header) < 24:
            raise PcapError("truncated capture file header")
        self._order = order
        self.nanosecond = magic == _MAGIC_NSEC
        major, minor, _zone, _sigfigs, snaplen, link = struct.unpack(
            order + "HHiIII", header[4:]
        )
        if major != 2:
            raise PcapError(f"unsupported file version {major}.{minor}")
        self.version = (major, minor)
        self.snaplen = snaplen
        self.link_type: LinkType | int = _normalise_link_type(link)
        self._record = struct.Struct(order + "IIII")

    def __iter__(self) -> Iterator[Packet]:
        limit = max(self.snaplen, _MAX_SNAPLEN)
        while True:
            raw = self._stream.read(self._record.size)
            if len(raw) < self._record.size:
                return
            ts_sec, ts_frac, caplen, orig_len = self._record.unpack(raw)
            if caplen > limit:
                return
            data = self._stream.read(caplen)
            if len(data) < caplen:
                return
            ts_usec = ts_frac // 1000 if self.nanosecond else ts_frac
            yield Packet(ts_sec, ts_usec, data, orig_len)


@contextmanager
def open_pcap(path) -> Iterator[PcapReader]:
    """Open a capture file and yield a reader over it."""
    try:
        stream = open(path, "rb")
    except OSError as exc:
        raise PcapError(f"{path}: {exc.strerror or exc}") from exc
    with stream:
        yield PcapReader(stream)