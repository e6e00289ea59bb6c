# tests/conftest.py
import asyncio
import os
import sys
import uuid
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

# --- Asegurar que podemos importar 'app' desde la raíz del repo ---
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# --- Claves efímeras (RSA 2048); app.core.keys no lee Settings ---
from app.core.keys import write_rsa_keypair

TZ = "America/Argentina/Buenos_Aires"
TMP = (ROOT / ".pytest_tmp").absolute()
APP_DB = TMP / "test.sqlite3"


def _generate_ephemeral_keys(keys_dir: Path) -> tuple[Path, Path]:
    priv, pub = keys_dir / "auth_private.pem", keys_dir / "auth_public.pem"
    write_rsa_keypair(priv, pub)
    return priv, pub


def _prepare_test_env() -> None:
    TMP.mkdir(exist_ok=True)

    # BD SQLite temporal para pruebas, limpia en cada sesión
    if APP_DB.exists():
        APP_DB.unlink()
    os.environ["DB_URL"] = f"sqlite+aiosqlite:///{APP_DB.as_posix()}"

    # Variables mínimas para que Settings funcione sin .env
    os.environ["JWT_ALG"] = "RS256"
    os.environ["TIME_ZONE"] = TZ
    os.environ["QR_BASE_URL"] = "http://testserver/qr"
    os.environ["QR_SWEEP_INTERVAL_SECONDS"] = "0"
    os.environ.pop("SMTP_HOST", None)

    priv_path, pub_path = _generate_ephemeral_keys(TMP)
    os.environ["AUTH_PRIVATE_KEY_PATH"] = priv_path.as_posix()
    os.environ["AUTH_PUBLIC_KEY_PATH"] = pub_path.as_posix()


# Antes de cualquier import de 'app': Settings se instancia al importar
_prepare_test_env()

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from app.core.clock import Clock
from app.core.config import Settings
from app.core.crypto import sign_access_token
from app.db.models import Appointment, AppointmentStatus, Base, QRToken
from app.db.session import make_engine, make_sessionmaker


class FrozenClock(Clock):
    """Reloj controlable desde los tests."""

    def __init__(self, time_zone: str = TZ):
        super().__init__(time_zone)
        self.current = datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self.current

    def set_local(self, y: int, mo: int, d: int, h: int, mi: int = 0) -> datetime:
        self.current = self.localize(datetime(y, mo, d, h, mi))
        return self.current

    def advance(self, **kw) -> datetime:
        self.current = self.current + timedelta(**kw)
        return self.current


class SyncDB:
    """Acceso síncrono al mismo fichero SQLite para sembrar y comprobar datos."""

    def __init__(self, path: Path):
        self.engine = create_engine(f"sqlite:///{path.as_posix()}")

    def add(self, *objs):
        with Session(self.engine, expire_on_commit=False) as s:
            s.add_all(objs)
            s.commit()
        return objs[0] if len(objs) == 1 else objs

    def appointment(self, **kw) -> Appointment:
        fields = {
            "id": uuid.uuid4().hex,
            "client_id": "client-1",
            "professional_id": "pro-1",
            "scheduled_date": date(2026, 10, 20),
            "scheduled_time": "14:00",
            "status": AppointmentStatus.CONFIRMED,
        }
        fields.update(kw)
        return self.add(Appointment(**fields))

    def get(self, model, pk):
        with Session(self.engine) as s:
            return s.get(model, pk)

    def update(self, obj_model, pk, **values):
        with Session(self.engine) as s:
            obj = s.get(obj_model, pk)
            for k, v in values.items():
                setattr(obj, k, v)
            s.commit()

    def token(self, token: str) -> QRToken | None:
        with Session(self.engine) as s:
            return s.execute(select(QRToken).where(QRToken.token == token)).scalar_one_or_none()

    def tokens_for(self, subject_ref: str) -> list[QRToken]:
        with Session(self.engine) as s:
            return list(s.execute(select(QRToken).where(QRToken.subject_ref == subject_ref)).scalars())


# --- Servicios contra una BD propia por test ---

@pytest.fixture
def svc_settings():
    return Settings(time_zone=TZ, qr_base_url="http://testserver/qr")


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def svc_db(tmp_path):
    path = tmp_path / "svc.sqlite3"
    # NullPool: cada asyncio.run abre su propia conexión en su propio loop
    engine = make_engine(f"sqlite+aiosqlite:///{path.as_posix()}", poolclass=NullPool)

    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create())
    yield make_sessionmaker(engine), SyncDB(path)
    asyncio.run(engine.dispose())


@pytest.fixture
def sessions(svc_db):
    return svc_db[0]


@pytest.fixture
def db(svc_db):
    return svc_db[1]


# --- App completa vía HTTP ---

_APP_CLOCK = FrozenClock()


@pytest.fixture(scope="session")
def client():
    """
    Cliente de pruebas con entorno efímero:
    - BD sqlite en .pytest_tmp/test.sqlite3
    - Claves RSA generadas al vuelo en .pytest_tmp/
    - Reloj congelado inyectado en lugar del real
    """
    from app.main import app
    from app.api.deps import get_clock

    app.dependency_overrides[get_clock] = lambda: _APP_CLOCK
    # Con 'with' forzamos lifespan: crea tablas en startup y cierra engine en shutdown
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def app_clock():
    _APP_CLOCK.current = datetime.now(timezone.utc)
    return _APP_CLOCK


@pytest.fixture
def app_db(client):
    return SyncDB(APP_DB)


@pytest.fixture
def auth():
    def _headers(user_id: str, admin: bool = False) -> dict:
        return {"Authorization": f"Bearer {sign_access_token(user_id, is_admin=admin)}"}
    return _headers
