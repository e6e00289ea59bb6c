from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # Base de datos
    db_url: str = Field("sqlite+aiosqlite:///./qr.sqlite3", alias="DB_URL")

    # Zona horaria local del negocio (los turnos se guardan en hora local)
    time_zone: str = Field("America/Argentina/Buenos_Aires", alias="TIME_ZONE")

    # URLs de canje (lo que se codifica en el QR) y páginas de resultado
    qr_base_url: str = Field("http://127.0.0.1:8000/qr", alias="QR_BASE_URL")
    success_page_url: str = Field("/qr-success", alias="QR_SUCCESS_URL")
    error_page_url: str = Field("/qr-error", alias="QR_ERROR_URL")

    # Ventanas de validez
    default_expiration_minutes: int = Field(60, alias="QR_DEFAULT_EXPIRATION_MINUTES")
    checkin_open_minutes: int = Field(30, alias="CHECKIN_OPEN_MINUTES")
    checkin_close_minutes: int = Field(60, alias="CHECKIN_CLOSE_MINUTES")
    reuse_tolerance_seconds: int = Field(60, alias="QR_REUSE_TOLERANCE_SECONDS")

    # Barrido periódico de tokens vencidos (0 = desactivado)
    sweep_interval_seconds: int = Field(0, alias="QR_SWEEP_INTERVAL_SECONDS")

    # JWT de acceso (identidad del llamante)
    jwt_alg: str = Field("RS256", alias="JWT_ALG")
    priv_key_path: str = Field("keys/auth_private.pem", alias="AUTH_PRIVATE_KEY_PATH")
    pub_key_path: str = Field("keys/auth_public.pem", alias="AUTH_PUBLIC_KEY_PATH")

    # Correo (sin SMTP_HOST solo se registra en el log)
    smtp_host: str | None = Field(None, alias="SMTP_HOST")
    smtp_port: int = Field(587, alias="SMTP_PORT")
    smtp_username: str | None = Field(None, alias="SMTP_USERNAME")
    smtp_password: str | None = Field(None, alias="SMTP_PASSWORD")
    sender_email: str = Field("Spa Sentirse Bien <noreply@sentirsebien.local>", alias="SENDER_EMAIL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,  # permite defaults si no hay variable de entorno
    )


settings = Settings()
