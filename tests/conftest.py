"""
pytest configuration for avatar_pipeline tests.

Adds src directory to Python path for imports and provides shared
fixtures: test certificates and image payloads.
"""

import datetime
import io
import os
import struct
import sys
import zlib
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from cryptography import x509  # noqa: E402
from cryptography.hazmat.primitives import hashes, serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import ec  # noqa: E402
from cryptography.x509.oid import NameOID  # noqa: E402
from PIL import Image  # noqa: E402


def _self_signed(common_name, san_names=None):
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)

    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
    )
    if san_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(n) for n in san_names]),
            critical=False,
        )

    return builder.sign(key, hashes.SHA256()), key


def make_certificate(common_name, san_names=None, encoding="der"):
    """Build a self-signed certificate with the given subject CN and SAN DNS names."""
    cert, _ = _self_signed(common_name, san_names)
    if encoding == "pem":
        return cert.public_bytes(serialization.Encoding.PEM)
    return cert.public_bytes(serialization.Encoding.DER)


def write_server_credentials(directory, common_name, san_names=None):
    """Write a self-signed server certificate and its key as PEM files."""
    cert, key = _self_signed(common_name, san_names)
    cert_path = Path(directory) / "server.crt"
    key_path = Path(directory) / "server.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return str(cert_path), str(key_path)


def make_png(width=4, height=3):
    """Encode a small RGBA PNG."""
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), (255, 0, 0, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


def make_broken_chunk_png(width=32, height=32):
    """
    Encode a PNG whose pixel data continues in a chunk with an invalid type.

    Pillow opens it, then fails while loading the second half of the data.
    """
    buffer = io.BytesIO()
    pixels = os.urandom(width * height * 3)
    Image.frombytes("RGB", (width, height), pixels).save(buffer, format="PNG")
    png = buffer.getvalue()

    start = png.index(b"IDAT") - 4
    (length,) = struct.unpack(">I", png[start : start + 4])
    data = png[start + 8 : start + 8 + length]
    half = length // 2

    def chunk(cid, payload):
        crc = zlib.crc32(cid + payload) & 0xFFFFFFFF
        return struct.pack(">I", len(payload)) + cid + payload + struct.pack(">I", crc)

    return (
        png[:start]
        + chunk(b"IDAT", data[:half])
        + chunk(b"T\xe8\x86\x00", data[half:])
        + png[start + 12 + length :]
    )


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def github_certificate():
    return make_certificate(
        "*.githubusercontent.com",
        san_names=["*.githubusercontent.com", "githubusercontent.com"],
    )


@pytest.fixture
def unrelated_certificate():
    return make_certificate("example.org", san_names=["example.org", "www.example.org"])


@pytest.fixture
def cert_factory():
    return make_certificate


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
def broken_chunk_png():
    return make_broken_chunk_png()


@pytest.fixture
def server_credentials(tmp_path):
    def factory(common_name, san_names=None):
        return write_server_credentials(tmp_path, common_name, san_names)

    return factory
