#!/usr/bin/env python3
"""
Swath Record Stream

File reader and writer for the framed swath record stream. Reading
follows a two-step protocol: the fixed-size RecordHeader first, then the
payload length it announces.
"""

import os
import logging
from typing import BinaryIO, Optional, Tuple

from .records import (RECORD_PREAMBLE, RecordError, RecordHeader, Payload,
                      decode_payload, encode_record)


class RecordReader:
    """
    Sequential reader for one swath file.

    Handles preamble resynchronisation after corrupt bytes and skips
    records whose payload cannot be decoded.
    """

    def __init__(self, path: str):
        """
        Initialize reader.

        Args:
            path: Swath file to read
        """
        self.path = path
        self.file: Optional[BinaryIO] = None
        self.records_read = 0
        self.records_skipped = 0
        self.bytes_skipped = 0

        self.logger = logging.getLogger('RecordReader')

    def open(self):
        self.file = open(self.path, 'rb')
        self.logger.debug(f"Opened {self.path}")

    def close(self):
        """Close the input file."""
        if self.file:
            self.file.close()
            self.file = None

    def read_exact(self, size: int, inside_record: bool = False) -> Optional[bytes]:
        """
        Read exactly ``size`` bytes.

        A file that ends part way through the request, or at the start of
        it when ``inside_record`` is set, is treated as end of file; the
        partial record is counted as skipped.

        Returns:
            Bytes read, or None at end of file
        """
        data = self.file.read(size)
        if not data and not inside_record:
            return None
        if len(data) < size:
            self.records_skipped += 1
            self.logger.warning(f"{self.path}: file ends inside a record, expected {size} bytes, "
                                f"got {len(data)}; truncated record dropped")
            return None
        return data

    def resync_to_preamble(self, buffer: bytes) -> Optional[bytes]:
        """
        Search forward for the next valid preamble.

        Args:
            buffer: Bytes already consumed that failed to parse

        Returns:
            A complete header's worth of bytes starting at the preamble,
            or None if the file ends first
        """
        window = bytearray(buffer)
        skipped = 0
        start = 1
        while True:
            index = window.find(RECORD_PREAMBLE, start)
            if index >= 0:
                skipped += index
                window = window[index:]
                break
            # keep a tail that may hold the start of a split preamble
            drop = max(0, len(window) - (len(RECORD_PREAMBLE) - 1))
            skipped += drop
            window = window[drop:]
            start = 0
            chunk = self.file.read(4096)
            if not chunk:
                self.logger.warning(f"{self.path}: end of file while searching for preamble")
                return None
            window.extend(chunk)

        # hand back any bytes read past the header
        excess = len(window) - RecordHeader.SIZE
        if excess > 0:
            self.file.seek(-excess, os.SEEK_CUR)
            window = window[:RecordHeader.SIZE]
        elif excess < 0:
            rest = self.read_exact(-excess, inside_record=True)
            if rest is None:
                return None
            window.extend(rest)

        self.bytes_skipped += skipped
        self.logger.warning(f"{self.path}: lost sync, skipped {skipped} bytes to next preamble")
        return bytes(window)

    def read_record(self) -> Optional[Tuple[int, Payload]]:
        """
        Read one complete record (header + payload).

        Returns:
            (kind, Ping | Comment | OtherRecord), or None at end of file
        """
        while True:
            header_bytes = self.read_exact(RecordHeader.SIZE)
            if header_bytes is None:
                return None

            header = RecordHeader.from_bytes(header_bytes)
            if not header.is_valid():
                header_bytes = self.resync_to_preamble(header_bytes)
                if header_bytes is None:
                    return None
                header = RecordHeader.from_bytes(header_bytes)

            payload = self.read_exact(header.data_count, inside_record=True) if header.data_count else b''
            if payload is None:
                return None

            try:
                record = decode_payload(header.kind, payload)
            except RecordError as e:
                self.records_skipped += 1
                self.logger.error(f"{self.path}: {e}, record skipped")
                continue

            self.records_read += 1
            return record

    def __iter__(self):
        while True:
            record = self.read_record()
            if record is None:
                return
            yield record

    def __enter__(self):
        """Context manager entry."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class RecordWriter:
    """Sequential writer for one swath file."""

    def __init__(self, path: str):
        self.path = path
        self.file: Optional[BinaryIO] = None
        self.records_written = 0

        self.logger = logging.getLogger('RecordWriter')

    def open(self):
        self.file = open(self.path, 'wb')
        self.logger.debug(f"Opened {self.path} for writing")

    def close(self):
        """Flush and close the output file."""
        if self.file:
            self.file.flush()
            self.file.close()
            self.file = None

    def write_record(self, kind: int, obj: Payload):
        self.file.write(encode_record(kind, obj))
        self.records_written += 1

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
