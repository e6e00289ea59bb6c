# Genera (si faltan) las claves RSA de desarrollo y emite un JWT de acceso.
# Uso: python tools/dev_token.py <user_id> [--admin]
from pathlib import Path
import sys

from app.core.config import settings
from app.core.crypto import sign_access_token
from app.core.keys import write_rsa_keypair

priv = Path(settings.priv_key_path)
if not priv.exists():
    write_rsa_keypair(priv, Path(settings.pub_key_path))

user_id = sys.argv[1] if len(sys.argv) > 1 else "admin"
print(sign_access_token(user_id, is_admin="--admin" in sys.argv[2:], exp_minutes=24 * 60))
