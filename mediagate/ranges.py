"""
HTTP Range negotiation against a file's current size

Only single byte ranges are honoured. Multi-range requests and headers that
do not parse are downgraded to a full 200 response, which every player
handles; a well-formed range outside the file is a 416.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .errors import RangeNotSatisfiableError

logger = logging.getLogger(__name__)

_RANGE_RE = re.compile(r'^bytes=(\d*)-(\d*)$')


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int
    is_partial: bool

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def status_code(self) -> int:
        return 206 if self.is_partial else 200

    def content_range(self, total_size: int) -> str:
        return f"bytes {self.start}-{self.end}/{total_size}"


def full_range(total_size: int) -> ByteRange:
    # An empty file yields start=0, end=-1, i.e. length 0
    return ByteRange(0, total_size - 1, False)


def negotiate(range_header: Optional[str], total_size: int) -> ByteRange:
    """Turn a Range header into a validated ByteRange

    Raises RangeNotSatisfiableError when the requested interval does not fit
    inside total_size.
    """
    if range_header is None or not range_header.strip():
        return full_range(total_size)

    value = range_header.strip().replace(' ', '')
    if "," in value:
        logger.info(f"Multi-range request not supported, serving full file: {range_header}")
        return full_range(total_size)

    match = _RANGE_RE.match(value)
    if not match or (not match.group(1) and not match.group(2)):
        logger.info(f"Unparseable Range header, serving full file: {range_header}")
        return full_range(total_size)

    first, last = match.group(1), match.group(2)

    if not first:
        # Suffix form: the final N bytes
        suffix = int(last)
        if suffix == 0 or total_size == 0:
            raise RangeNotSatisfiableError(total_size)
        start = max(0, total_size - suffix)
        return ByteRange(start, total_size - 1, True)

    start = int(first)
    end = int(last) if last else total_size - 1

    if start > end or end >= total_size:
        raise RangeNotSatisfiableError(total_size)

    return ByteRange(start, end, True)
