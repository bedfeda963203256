"""
npyload - Reader for the NumPy .npy array-interchange format

A small Python implementation for decoding .npy files into typed arrays
without relying on numpy.load(). The binary layout is parsed explicitly,
byte by byte, so that every offset and byte order is under our control.

Features:
- Format versions 1.0 and 2.0
- Unsigned integer arrays (1, 2, 4 and 8 bytes) in big, little or native byte order
- Fixed-width byte string arrays decoded as UTF-8 text
- C (row-major) and Fortran (column-major) storage order

License: MIT
"""

__version__ = "0.1.0"

import ast
import logging
import os
import re
import sys
import numpy as np
from typing import Any, BinaryIO, List, NamedTuple, Optional, Tuple, Union


logger = logging.getLogger(__name__)


# Layout of a .npy file
#
# offset  size           field
# 0       6              magic string b'\x93NUMPY'
# 6       1              major version (1 or 2)
# 7       1              minor version (0)
# 8       2 (v1) 4 (v2)  header length, unsigned little-endian
# 10/12   header_len     header: Python literal dict with 'descr',
#                        'fortran_order' and 'shape', padded with spaces
#                        and terminated by '\n'
# ...     rest           element buffer

MAGIC_PREFIX = b'\x93NUMPY'

# Width of the header length field for each supported major version
header_len_sizes = {1: 2, 2: 4}

# Byte order selectors
HOST = 'host'
BIG = 'big'
LITTLE = 'little'
NA = 'na'

# Map the byte order character of a dtype descriptor to a selector
byteorder_map = {
    '<': LITTLE,
    '>': BIG,
    '=': HOST,
    '|': NA,
    '': NA,
}

# Widths accepted by the unsigned integer reader
uint_widths = (1, 2, 4, 8)

_descr_re = re.compile(r"^([<>|=]?)([a-zA-Z])(\d+)\Z")


class FormatError(ValueError):
    """Malformed or unsupported .npy structure."""


class HeaderError(FormatError):
    """The header dictionary could not be parsed."""


class TypeMismatch(TypeError):
    """The requested type does not match the declared element type."""


class NpyHeader(NamedTuple):
    """
    Descriptor parsed from the header of a .npy file.

    Attributes:
        type_char: The dtype kind character ('u' for unsigned integers,
                   'S' for fixed-width byte strings, ...)
        itemsize: Width of one element in bytes
        byteorder: 'host', 'big', 'little' or 'na'
        shape: Array dimensions
        fortran_order: True when elements are stored column-major
    """
    type_char: str
    itemsize: int
    byteorder: str
    shape: Tuple[int, ...]
    fortran_order: bool

    @property
    def size(self) -> int:
        """Number of elements declared by the shape."""
        total_elements = 1
        for dim in self.shape:
            total_elements *= dim
        return total_elements


def read_uints(data: bytes, count: int, width: int, byteorder: str) -> List[int]:
    """
    Decode a byte region as a sequence of unsigned integers.

    Each group of `width` bytes is composed into one integer in the given
    byte order. Element i is taken from bytes [i*width, (i+1)*width).

    Args:
        data: The byte region to decode
        count: Number of integers expected in the region
        width: Size of each integer in bytes (1, 2, 4 or 8)
        byteorder: 'big', 'little' or 'host'. 'host' uses the native order
                   of this platform and is only correct when the data was
                   written on a machine with the same order.

    Returns:
        List[int]: The decoded integers

    Raises:
        FormatError: If the width or byte order is invalid or the region
                     size is not count * width
    """
    if width not in uint_widths:
        raise FormatError(f"Unsupported integer width: {width}")

    if byteorder == HOST:
        byteorder = sys.byteorder
    elif byteorder not in (BIG, LITTLE):
        raise FormatError(f"Invalid byte order for {width}-byte integers: {byteorder!r}")

    if len(data) != count * width:
        raise FormatError(f"Expected {count * width} bytes for {count} integers "
                          f"of width {width}, got {len(data)}")

    return [int.from_bytes(data[i * width:(i + 1) * width], byteorder=byteorder, signed=False)
            for i in range(count)]


def read_uint8s(data: bytes, count: int) -> List[int]:
    """Return the bytes of the region as a list of 8-bit unsigned integers."""
    if len(data) != count:
        raise FormatError(f"Expected {count} bytes, got {len(data)}")
    return list(data)


def read_strings(data: bytes, count: int, width: int, strict: bool = False) -> List[str]:
    """
    Decode a byte region as a sequence of fixed-width strings.

    Every slot of `width` bytes is right-padded with zero bytes. Only the
    padding after the last non-zero byte is removed; zero bytes inside the
    content are kept. The content is decoded as UTF-8.

    A slot whose content is not valid UTF-8 decodes to the empty string
    unless `strict` is set, in which case the whole decode fails.

    Args:
        data: The byte region to decode
        count: Number of strings expected in the region
        width: Size of each slot in bytes
        strict: Raise instead of substituting '' for undecodable content

    Returns:
        List[str]: The decoded strings

    Raises:
        FormatError: If the region size is not count * width, or if strict
                     is set and a slot is not valid UTF-8
    """
    if len(data) != count * width:
        raise FormatError(f"Expected {count * width} bytes for {count} strings "
                          f"of width {width}, got {len(data)}")

    strings = []
    for i in range(count):
        slot = data[i * width:(i + 1) * width]

        # Find the end of the content, the rest is zero padding
        end = len(slot)
        while end > 0 and slot[end - 1] == 0:
            end -= 1

        try:
            strings.append(bytes(slot[:end]).decode('utf-8'))
        except UnicodeDecodeError as e:
            if strict:
                raise FormatError(f"String {i} is not valid UTF-8: {e}") from e
            logger.warning('string %d is not valid UTF-8, replaced by an empty string', i)
            strings.append('')

    return strings


def parse_header(text: bytes) -> NpyHeader:
    """
    Parse the header dictionary of a .npy file.

    Args:
        text: The raw header bytes, including padding and the trailing newline

    Returns:
        NpyHeader: The parsed descriptor

    Raises:
        HeaderError: If the header is not a valid descriptor dictionary
    """
    try:
        d = ast.literal_eval(bytes(text).decode('latin1').strip())
    except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError) as e:
        raise HeaderError(f"Cannot parse header {bytes(text)!r}") from e

    if not isinstance(d, dict):
        raise HeaderError(f"Header is not a dictionary: {d!r}")

    keys = sorted(d.keys(), key=str)
    if keys != ['descr', 'fortran_order', 'shape']:
        raise HeaderError(f"Header does not contain the correct keys: {keys!r}")

    descr = d['descr']
    if not isinstance(descr, str):
        # Structured dtypes are stored as a list of fields
        raise HeaderError(f"Unsupported descr: {descr!r}")
    match = _descr_re.match(descr)
    if not match:
        raise HeaderError(f"Cannot parse descr: {descr!r}")
    order_char, type_char, itemsize = match.groups()
    itemsize = int(itemsize)

    fortran_order = d['fortran_order']
    if not isinstance(fortran_order, bool):
        raise HeaderError(f"fortran_order is not a boolean: {fortran_order!r}")

    shape = d['shape']
    if not (isinstance(shape, tuple)
            and all(isinstance(x, int) and not isinstance(x, bool) and x >= 0 for x in shape)):
        raise HeaderError(f"shape is not a tuple of non-negative integers: {shape!r}")

    byteorder = byteorder_map[order_char]
    # Byte order has no meaning for single bytes and byte strings
    if itemsize == 1 or type_char == 'S':
        byteorder = NA

    return NpyHeader(type_char, itemsize, byteorder, shape, fortran_order)


def parse(data: bytes) -> Tuple[NpyHeader, bytes]:
    """
    Split a .npy file into its header descriptor and element buffer.

    The element buffer is not checked against the shape here.

    Args:
        data: The whole file contents

    Returns:
        Tuple[NpyHeader, bytes]: The descriptor and the element buffer

    Raises:
        FormatError: If the magic or version is wrong or the data is truncated
        HeaderError: If the header cannot be parsed
    """
    data = memoryview(data).cast('B')

    if len(data) < len(MAGIC_PREFIX) + 2:
        raise FormatError(f"File too short to be a .npy file: {len(data)} bytes")

    magic = bytes(data[:6])
    if magic != MAGIC_PREFIX:
        raise FormatError(f"Invalid magic: {magic!r}")

    major = data[6]
    if major not in header_len_sizes:
        raise FormatError(f"Unsupported major version: {major}")

    minor = data[7]
    if minor != 0:
        raise FormatError(f"Unsupported minor version: {minor}")

    start = 8 + header_len_sizes[major]
    if len(data) < start:
        raise FormatError(f"File too short for a version {major}.{minor} header length")
    header_len = read_uints(data[8:start], 1, header_len_sizes[major], LITTLE)[0]

    logger.debug('version %d.%d, header length %d', major, minor, header_len)

    end = start + header_len
    if len(data) < end:
        raise FormatError(f"Header of {header_len} bytes exceeds the file size {len(data)}")

    header = parse_header(data[start:end])
    logger.debug('header %r', header)

    return header, bytes(data[end:])


class NpyArray:
    """
    An array decoded from a .npy file.

    Holds the header descriptor and the raw element buffer. The elements are
    decoded on demand with elements() or to_numpy().
    """

    def __init__(self, header: NpyHeader, data: bytes, strict: bool = False):
        """
        Initialize an NpyArray object.

        Args:
            header: The parsed header descriptor
            data: The element buffer following the header
            strict: Default text decoding policy, see read_strings()

        Raises:
            FormatError: If the element type is unsupported or the buffer
                         size does not match the shape
        """
        if header.type_char == 'u':
            if header.itemsize not in uint_widths:
                raise FormatError(f"Unsupported unsigned integer width: {header.itemsize}")
        elif header.type_char != 'S':
            raise FormatError(f"Unsupported data type: {header.type_char}{header.itemsize}")

        expected = header.size * header.itemsize
        if len(data) != expected:
            raise FormatError(f"Element buffer has {len(data)} bytes, "
                              f"{expected} expected for shape {header.shape}")

        self.header = header
        self.data = data
        self.strict = strict

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.header.shape

    @property
    def fortran_order(self) -> bool:
        return self.header.fortran_order

    @property
    def size(self) -> int:
        return self.header.size

    @property
    def dtype(self) -> np.dtype:
        """The NumPy dtype of the decoded values."""
        if self.header.type_char == 'S':
            # NumPy has no sized U0, empty slots still need one character
            return np.dtype(f'U{max(self.header.itemsize, 1)}')
        return np.dtype(f'u{self.header.itemsize}')

    def _check_dtype(self, dtype: Any):
        try:
            requested = np.dtype(dtype)
        except (TypeError, ValueError) as e:
            raise TypeMismatch(f"Not a data type: {dtype!r}") from e

        if self.header.type_char == 'S':
            if requested.kind not in 'US':
                raise TypeMismatch(f"Cannot decode strings as {requested}")
        elif requested.kind != 'u' or requested.itemsize != self.header.itemsize:
            raise TypeMismatch(f"Cannot decode {self.dtype} elements as {requested}")

    def elements(self, dtype: Any = None, strict: Optional[bool] = None) -> List[Union[int, str]]:
        """
        Decode the element buffer into a flat list.

        The values are returned in buffer order, which is column-major when
        fortran_order is set.

        dtype only checks compatibility, it does not convert: string arrays
        always yield str values, whether str or bytes was requested.

        Args:
            dtype: Optional type the caller expects, e.g. np.uint16 or str
            strict: Text decoding policy, defaults to the one given at construction

        Returns:
            List[Union[int, str]]: The decoded values

        Raises:
            TypeMismatch: If dtype is incompatible with the declared type
            FormatError: If the buffer cannot be decoded
        """
        if dtype is not None:
            self._check_dtype(dtype)
        if strict is None:
            strict = self.strict

        header = self.header
        if header.type_char == 'S':
            return read_strings(self.data, header.size, header.itemsize, strict=strict)
        elif header.itemsize == 1:
            return read_uint8s(self.data, header.size)
        else:
            return read_uints(self.data, header.size, header.itemsize, header.byteorder)

    def to_numpy(self, strict: Optional[bool] = None) -> np.ndarray:
        """
        Build a NumPy array with the declared shape.

        Returns:
            np.ndarray: Array of dtype self.dtype
        """
        values = self.elements(strict=strict)
        flat_array = np.array(values, dtype=self.dtype).reshape(-1)
        order = 'F' if self.fortran_order else 'C'
        return flat_array.reshape(self.shape, order=order)

    def __len__(self):
        if not self.shape:
            raise TypeError("len() of a 0-d array")
        return self.shape[0]

    def __repr__(self):
        return (f"<NpyArray shape={self.shape} dtype={self.dtype} "
                f"fortran_order={self.fortran_order}>")


def loads(data: bytes, strict: bool = False) -> NpyArray:
    """
    Decode a .npy file held in memory.

    Args:
        data: The file contents (bytes, bytearray or memoryview)
        strict: Fail on strings that are not valid UTF-8 instead of
                replacing them with ''

    Returns:
        NpyArray: The decoded array
    """
    header, elements_data = parse(data)
    return NpyArray(header, elements_data, strict=strict)


def load(file: Union[str, os.PathLike, BinaryIO], strict: bool = False) -> NpyArray:
    """
    Read and decode a .npy file.

    Args:
        file: Path of the file or a binary file object open for reading
        strict: See loads()

    Returns:
        NpyArray: The decoded array
    """
    if isinstance(file, (str, os.PathLike)):
        logger.debug('reading %s', file)
        with open(file, 'rb') as f:
            data = f.read()
    else:
        data = file.read()

    return loads(data, strict=strict)
