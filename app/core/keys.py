# app/core/keys.py
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def write_rsa_keypair(priv_path: Path, pub_path: Path, key_size: int = 2048) -> None:
    """Genera un par RSA y lo escribe en PEM (privada sin cifrar)."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    priv_path.parent.mkdir(parents=True, exist_ok=True)
    pub_path.parent.mkdir(parents=True, exist_ok=True)
    priv_path.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    pub_path.write_bytes(key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ))


def read_private_key(path: str | Path):
    return serialization.load_pem_private_key(Path(path).read_bytes(), password=None)


def read_public_key(path: str | Path):
    return serialization.load_pem_public_key(Path(path).read_bytes())
