"""
存档バイナリの読み書きカーソル。

存档は次の規則で書かれている:
- ビット値は現在のバイトの下位ビットから順に詰める
- バイト境界に揃う読み取り(整数・浮動小数・文字列)を行うとビット位置はリセットされる
- 整数・浮動小数はリトルエンディアン
- 可変長整数は 7bit ずつ、最上位ビットが継続フラグ(最大5バイト)
- 文字列は 可変長整数の長さ + UTF-8

読み取りがバッファ末尾を越える場合は必ず TruncatedDataError を送出する。
"""

from __future__ import annotations

import struct
from typing import List

from phi_rks.errors import MalformedRecordError, TruncatedDataError

_VARINT_MAX_BYTES = 5


class BinaryReader:
    """境界チェック付きの読み取りカーソル。"""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._pos = 0
        self._current_byte = 0
        self._bit_pos = 8

    @property
    def position(self) -> int:
        return self._pos

    def remaining(self) -> int:
        """未読のバイト数(ビット読み取り途中のバイトは読了扱い)。"""
        return len(self._data) - self._pos

    def _take(self, size: int, what: str) -> bytes:
        if size < 0:
            raise MalformedRecordError(f"{what}: negative length {size}")
        end = self._pos + size
        if end > len(self._data):
            raise TruncatedDataError(
                f"{what}: need {size} bytes at offset {self._pos}, "
                f"only {len(self._data) - self._pos} left"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def reset_bits(self) -> None:
        self._bit_pos = 8

    def read_bit(self) -> bool:
        if self._bit_pos >= 8:
            self._current_byte = self._take(1, "bit")[0]
            self._bit_pos = 0
        value = (self._current_byte >> self._bit_pos) & 1
        self._bit_pos += 1
        return value != 0

    def read_bits(self, count: int) -> List[bool]:
        return [self.read_bit() for _ in range(count)]

    def read_byte(self) -> int:
        self.reset_bits()
        return self._take(1, "byte")[0]

    def read_u16(self) -> int:
        self.reset_bits()
        return struct.unpack("<H", self._take(2, "u16"))[0]

    def read_u32(self) -> int:
        self.reset_bits()
        return struct.unpack("<I", self._take(4, "u32"))[0]

    def read_f32(self) -> float:
        self.reset_bits()
        return struct.unpack("<f", self._take(4, "f32"))[0]

    def read_varint(self) -> int:
        self.reset_bits()
        result = 0
        for shift in range(_VARINT_MAX_BYTES):
            value = self._take(1, "varint")[0]
            result |= (value & 0x7F) << (7 * shift)
            if value & 0x80 == 0:
                return result
        raise MalformedRecordError(f"varint longer than {_VARINT_MAX_BYTES} bytes")

    def read_string(self) -> str:
        length = self.read_varint()
        raw = self._take(length, "string")
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedRecordError(f"invalid UTF-8 string at offset {self._pos - length}") from e


class BinaryWriter:
    """BinaryReader と同じ規則で書き込むライター。"""

    def __init__(self):
        self._buf = bytearray()
        self._bit_pos = 8

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def reset_bits(self) -> None:
        self._bit_pos = 8

    def write_bit(self, value: bool) -> None:
        if self._bit_pos >= 8:
            self._buf.append(0)
            self._bit_pos = 0
        if value:
            self._buf[-1] |= 1 << self._bit_pos
        self._bit_pos += 1

    def write_bits(self, values) -> None:
        for value in values:
            self.write_bit(bool(value))

    def write_byte(self, value: int) -> None:
        self.reset_bits()
        self._buf.append(value & 0xFF)

    def write_u16(self, value: int) -> None:
        self.reset_bits()
        self._buf += struct.pack("<H", value)

    def write_u32(self, value: int) -> None:
        self.reset_bits()
        self._buf += struct.pack("<I", value)

    def write_f32(self, value: float) -> None:
        self.reset_bits()
        self._buf += struct.pack("<f", value)

    def write_varint(self, value: int) -> None:
        self.reset_bits()
        if value < 0:
            raise ValueError("varint must be non-negative")
        while True:
            part = value & 0x7F
            value >>= 7
            if value:
                self._buf.append(part | 0x80)
            else:
                self._buf.append(part)
                return

    def write_string(self, value: str) -> None:
        raw = value.encode("utf-8")
        self.write_varint(len(raw))
        self._buf += raw
