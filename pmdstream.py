# -*- coding: utf-8 -*-
"""
pmdstream.py - Binary read/write streams for PMD model files.

All numbers are little-endian. Text fields are fixed-width, zero-terminated
and encoded in windows-31j (cp932).
"""
from __future__ import annotations

import struct
from typing import BinaryIO, Optional, Tuple

##################################################################################
# Format limits (in bytes unless noted)
MAXBYTES_MODELNAME = 20
MAXBYTES_MODELDESC = 256
MAXBYTES_BONENAME = 20
MAXBYTES_MORPHNAME = 20
MAXBYTES_BONEGROUPNAME = 50
MAXBYTES_TEXTUREFILENAME = 20
MAXBYTES_TOONFILENAME = 100
MAXBYTES_RIGIDNAME = 20
MAXBYTES_JOINTNAME = 20

MAX_BONE = 65535
RIGIDGROUP_FIXEDNUM = 16
TOON_FIXEDNUM = 10

CHARSET = 'cp932'

# Padding patterns for fixed-width text fields. The last byte repeats.
FILLER_NULL = b'\x00'
FILLER_FD = b'\x00\xfd'
FILLER_LF = b'\x0a\x00\xfd'

UCS_YEN = '¥'
SJIS_YEN = '\\'

CR = '\r'
LF = '\n'
CRLF = CR + LF


##################################################################################
class InvalidFileError(Exception):
    """The file is not a well-formed PMD model."""

    def __init__(self, message: str = 'invalid PMD data', offset: Optional[int] = None):
        self.message = message
        self.offset = offset
        if offset is not None:
            message = f'{message} (offset {offset})'
        super().__init__(message)


class TruncatedFileError(InvalidFileError):
    """The stream ended before the record being read was complete."""

    def __init__(self, offset: Optional[int] = None):
        super().__init__('unexpected end of stream', offset)


class ExportError(Exception):
    """The model cannot be written as a PMD file."""
    pass


class ExportTextError(ExportError):
    """A text field is too long or not representable in windows-31j."""
    pass


def normalize_break(text: str) -> str:
    """Convert CRLF and lone CR into LF."""
    return text.replace(CRLF, LF).replace(CR, LF)


def chop_last_lf(text: str) -> str:
    if text.endswith(LF):
        return text[:-1]
    return text


##################################################################################
class FileStream:
    def __init__(self, file_obj: BinaryIO):
        if file_obj is None:
            raise ValueError('stream must not be None')
        self._file_obj = file_obj
        self._position = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def position(self) -> int:
        return self._position

    def close(self):
        if self._file_obj is not None:
            self._file_obj.close()
            self._file_obj = None


class FileReadStream(FileStream):
    """
    Sequential reader over a binary stream.
    One byte of pushback lets hasMore() peek at the end without consuming data.
    """
    SKIP_CHUNK = 8192

    def __init__(self, file_obj: BinaryIO):
        FileStream.__init__(self, file_obj)
        self.__pushback = b''

    def __read(self, size: int) -> bytes:
        data = b''
        if self.__pushback and size > 0:
            data = self.__pushback
            self.__pushback = b''
            size -= 1
        if size > 0:
            data += self._file_obj.read(size)
        return data

    def __readExact(self, size: int) -> bytes:
        data = self.__read(size)
        self._position += len(data)
        if len(data) != size:
            raise TruncatedFileError(self._position)
        return data

    def __unpack(self, fmt: str, size: int):
        v, = struct.unpack(fmt, self.__readExact(size))
        return v

    def hasMore(self) -> bool:
        if self.__pushback:
            return True
        data = self._file_obj.read(1)
        if not data:
            return False
        self.__pushback = data
        return True

    def skip(self, length: int) -> None:
        if length <= 0:
            return
        remain = length
        while remain > 0:
            data = self.__read(min(remain, self.SKIP_CHUNK))
            if not data:
                break
            self._position += len(data)
            remain -= len(data)
        if remain > 0:
            raise TruncatedFileError(self._position)

    # READ methods for general types
    def readSignedByte(self) -> int:
        return self.__unpack('<b', 1)

    def readByte(self) -> int:
        return self.__unpack('<B', 1)

    def readBool(self) -> bool:
        return self.readByte() != 0

    def readShort(self) -> int:
        return self.__unpack('<h', 2)

    def readUnsignedShort(self) -> int:
        return self.__unpack('<H', 2)

    def readInt(self) -> int:
        return self.__unpack('<i', 4)

    def readUnsignedInt(self) -> int:
        return self.__unpack('<I', 4)

    def readFloat(self) -> float:
        return self.__unpack('<f', 4)

    def readVector(self, size: int) -> Tuple[float, ...]:
        return struct.unpack('<' + 'f' * size, self.__readExact(4 * size))

    def readBytes(self, length: int) -> bytes:
        return self.__readExact(length)

    def readStr(self, maxlen: int) -> str:
        """Read a zero-terminated windows-31j text from a field of maxlen bytes."""
        buf = self.__readExact(maxlen)
        length = buf.find(b'\x00')
        if length < 0:
            length = maxlen
        try:
            text = buf[:length].decode(CHARSET)
        except UnicodeDecodeError:
            raise InvalidFileError('illegal character encoding', self._position) from None
        if UCS_YEN in text:
            text = text.replace(UCS_YEN, SJIS_YEN)
        return text


class FileWriteStream(FileStream):
    def __init__(self, file_obj: BinaryIO):
        FileStream.__init__(self, file_obj)

    def __write(self, data: bytes) -> None:
        self._file_obj.write(data)
        self._position += len(data)

    def __pack(self, fmt: str, *values) -> None:
        try:
            data = struct.pack(fmt, *values)
        except (struct.error, OverflowError):
            raise ExportError(f'value out of range for {fmt!r}: {values}') from None
        self.__write(data)

    def writeSignedByte(self, v):
        self.__pack('<b', int(v))

    def writeByte(self, v):
        self.__pack('<B', int(v))

    def writeBool(self, v):
        self.writeByte(1 if v else 0)

    def writeShort(self, v):
        self.__pack('<h', int(v))

    def writeUnsignedShort(self, v):
        self.__pack('<H', int(v))

    def writeInt(self, v):
        self.__pack('<i', int(v))

    def writeFloat(self, v):
        self.__pack('<f', float(v))

    def writeVector(self, v):
        self.__pack('<' + 'f' * len(v), *v)

    def writeBytes(self, v: bytes):
        self.__write(v)

    def writeStr(self, text: str, maxlen: int, filler: bytes = FILLER_FD) -> int:
        """
        Write text into a fixed-width field of maxlen bytes.
        Shorter text is padded with filler (its last byte repeats).
        Returns the number of text bytes written before padding.
        """
        data = encode_text(normalize_break(text))
        remain = maxlen - len(data)
        if remain < 0:
            raise ExportTextError(f'too long text: {text!r} ({len(data)} > {maxlen} bytes)')
        self.__write(data)
        if remain > 0:
            pad = filler[:remain]
            pad += filler[-1:] * (remain - len(pad))
            self.__write(pad)
        return len(data)

    def flush(self):
        self._file_obj.flush()


def encode_text(text: str) -> bytes:
    if any('\ud800' <= ch <= '\udfff' for ch in text):
        raise ExportTextError(f'invalid unicode sequence: {text!r}')
    try:
        return text.encode(CHARSET)
    except UnicodeEncodeError:
        raise ExportTextError(f'no character in win31j: {text!r}') from None
