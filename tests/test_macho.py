import plistlib
import struct

import pytest

from appledb.macho import MachOBinary, MachOError, path_is_macho

ENT_XML = plistlib.dumps({"com.example.allowed": True}).decode()


def build_macho(filetype=2, entitlements=None, with_signature=True):
    header_size = 32
    commands = b""
    signature = b""
    ncmds = 0
    if with_signature:
        if entitlements is not None:
            payload = entitlements.encode()
            blob = struct.pack(">II", 0xFADE7171, 8 + len(payload)) + payload
            index = struct.pack(">II", 5, 20)
            count = 1
        else:
            blob, index, count = b"", b"", 0
        signature = (
            struct.pack(">III", 0xFADE0CC0, 12 + len(index) + len(blob), count)
            + index
            + blob
        )
        commands = struct.pack("<IIII", 0x1D, 16, header_size + 16, len(signature))
        ncmds = 1
    header = struct.pack(
        "<IiiIIIII", 0xFEEDFACF, 0x0100000C, 0, filetype, ncmds, len(commands), 0, 0
    )
    return header + commands + signature


def fat(thin):
    return (
        struct.pack(">II", 0xCAFEBABE, 1)
        + struct.pack(">iiIII", 0x0100000C, 0, 32, len(thin), 0)
        + b"\0" * 4
        + thin
    )


def test_path_is_macho_detects_magic(tmp_path):
    binary = tmp_path / "tool"
    binary.write_bytes(build_macho(2, ENT_XML))
    text = tmp_path / "notes.txt"
    text.write_text("hello world")
    empty = tmp_path / "empty"
    empty.write_bytes(b"")
    assert path_is_macho(binary) is True
    assert path_is_macho(text) is False
    assert path_is_macho(empty) is False


def test_path_is_macho_accepts_fat(tmp_path):
    binary = tmp_path / "fat"
    binary.write_bytes(fat(build_macho(2)))
    assert path_is_macho(binary) is True


def test_path_is_macho_on_directory_raises(tmp_path):
    with pytest.raises(OSError):
        path_is_macho(tmp_path)


def test_parse_executable_with_entitlements():
    macho = MachOBinary.parse(build_macho(2, ENT_XML))
    assert macho.is_executable() is True
    assert macho.entitlements_xml() == ENT_XML


def test_dylib_is_not_executable():
    assert MachOBinary.parse(build_macho(6, ENT_XML)).is_executable() is False


def test_without_signature_has_no_entitlements():
    macho = MachOBinary.parse(build_macho(2, with_signature=False))
    assert macho.code_signature is None
    assert macho.entitlements_xml() is None


def test_signature_without_entitlements_slot():
    assert MachOBinary.parse(build_macho(2, None)).entitlements_xml() is None


def test_fat_uses_first_slice():
    assert MachOBinary.parse(fat(build_macho(2, ENT_XML))).entitlements_xml() == ENT_XML


def test_big_endian_32_bit_header():
    data = struct.pack(">IiiIIII", 0xFEEDFACE, 7, 3, 2, 0, 0, 0)
    macho = MachOBinary.parse(data)
    assert macho.cputype == 7
    assert macho.is_executable() is True


@pytest.mark.parametrize(
    "data",
    [b"", b"hello world!", b"\xcf\xfa\xed\xfe" + b"\0" * 4, build_macho(2, ENT_XML)[:40]],
)
def test_malformed_data_raises(data):
    with pytest.raises(MachOError):
        MachOBinary.parse(data)


def test_bad_signature_magic_raises():
    data = bytearray(build_macho(2, ENT_XML))
    data[48:52] = b"\0\0\0\0"
    macho = MachOBinary.parse(bytes(data))
    with pytest.raises(MachOError):
        macho.entitlements_xml()