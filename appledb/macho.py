"""Minimal Mach-O reader: file type and embedded entitlements."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from os import PathLike
from typing import Iterator

MH_MAGIC = 0xFEEDFACE
MH_CIGAM = 0xCEFAEDFE
MH_MAGIC_64 = 0xFEEDFACF
MH_CIGAM_64 = 0xCFFAEDFE
FAT_MAGIC = 0xCAFEBABE
FAT_CIGAM = 0xBEBAFECA
FAT_MAGIC_64 = 0xCAFEBABF

MH_EXECUTE = 0x2
LC_CODE_SIGNATURE = 0x1D

CSMAGIC_EMBEDDED_SIGNATURE = 0xFADE0CC0
CSMAGIC_EMBEDDED_ENTITLEMENTS = 0xFADE7171
CSSLOT_ENTITLEMENTS = 5

_MAGICS = frozenset(
    {MH_MAGIC, MH_CIGAM, MH_MAGIC_64, MH_CIGAM_64, FAT_MAGIC, FAT_CIGAM, FAT_MAGIC_64}
)


class MachOError(ValueError):
    """Raised when Mach-O data is malformed."""


def path_is_macho(path: str | PathLike[str]) -> bool:
    """Whether the file at ``path`` starts with a Mach-O or fat magic number."""
    with open(path, "rb") as handle:
        head = handle.read(4)
    return len(head) == 4 and int.from_bytes(head, "big") in _MAGICS


def _unpack(fmt: str, data: bytes, offset: int) -> tuple:
    size = struct.calcsize(fmt)
    if offset < 0 or offset + size > len(data):
        raise MachOError("unexpected end of Mach-O data")
    return struct.unpack_from(fmt, data, offset)


def _first_slice(data: bytes, wide: bool) -> bytes:
    (count,) = _unpack(">I", data, 4)
    if count == 0:
        raise MachOError("fat binary holds no architecture")
    if wide:
        _, _, offset, size, _, _ = _unpack(">iiQQII", data, 8)
    else:
        _, _, offset, size, _ = _unpack(">iiIII", data, 8)
    if offset + size > len(data):
        raise MachOError("fat architecture lies outside the file")
    return data[offset : offset + size]


def _load_commands(
    data: bytes, endian: str, start: int, count: int
) -> Iterator[tuple[int, int]]:
    offset = start
    for _ in range(count):
        cmd, cmdsize = _unpack(f"{endian}II", data, offset)
        if cmdsize < 8 or offset + cmdsize > len(data):
            raise MachOError("malformed load command")
        yield cmd, offset
        offset += cmdsize


@dataclass(frozen=True)
class MachOBinary:
    """The parts of a Mach-O image needed to read its entitlements."""

    cputype: int
    filetype: int
    code_signature: bytes | None

    @classmethod
    def parse(cls, data: bytes) -> MachOBinary:
        """Parse a thin Mach-O image; for a fat file the first slice is used."""
        if len(data) < 4:
            raise MachOError("data too short for a Mach-O header")
        magic = int.from_bytes(data[:4], "big")
        if magic in (FAT_MAGIC, FAT_MAGIC_64):
            return cls.parse(_first_slice(data, magic == FAT_MAGIC_64))
        if magic in (MH_MAGIC, MH_MAGIC_64):
            endian = ">"
        elif magic in (MH_CIGAM, MH_CIGAM_64):
            endian = "<"
        else:
            raise MachOError(f"bad Mach-O magic 0x{magic:08x}")
        header_size = 32 if magic in (MH_MAGIC_64, MH_CIGAM_64) else 28

        _, cputype, _, filetype, ncmds, _, _ = _unpack(f"{endian}IiiIIII", data, 0)
        signature = None
        for cmd, offset in _load_commands(data, endian, header_size, ncmds):
            if cmd == LC_CODE_SIGNATURE:
                dataoff, datasize = _unpack(f"{endian}II", data, offset + 8)
                if dataoff + datasize > len(data):
                    raise MachOError("code signature lies outside the file")
                signature = data[dataoff : dataoff + datasize]
        return cls(cputype=cputype, filetype=filetype, code_signature=signature)

    def is_executable(self) -> bool:
        """Whether the image is a main executable (not a library or bundle)."""
        return self.filetype == MH_EXECUTE

    def entitlements_xml(self) -> str | None:
        """The entitlements plist embedded in the code signature, if any."""
        signature = self.code_signature
        if signature is None:
            return None
        magic, _, count = _unpack(">III", signature, 0)
        if magic != CSMAGIC_EMBEDDED_SIGNATURE:
            raise MachOError(f"bad code signature magic 0x{magic:08x}")
        index = signature[12 : 12 + 8 * count]
        if len(index) != 8 * count:
            raise MachOError("truncated code signature index")
        for slot, offset in struct.iter_unpack(">II", index):
            if slot != CSSLOT_ENTITLEMENTS:
                continue
            blob_magic, length = _unpack(">II", signature, offset)
            if blob_magic != CSMAGIC_EMBEDDED_ENTITLEMENTS:
                raise MachOError(f"bad entitlements blob magic 0x{blob_magic:08x}")
            if length < 8 or offset + length > len(signature):
                raise MachOError("entitlements blob lies outside the signature")
            try:
                return signature[offset + 8 : offset + length].decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MachOError(f"entitlements are not UTF-8: {exc}") from exc
        return None