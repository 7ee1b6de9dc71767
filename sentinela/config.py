from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    database_url: str = 'sqlite:///./sentinela.db'
    session_cookie_name: str = 'sentinela_session'
    session_ttl_minutes: int = 30
    session_cookie_secure: bool = False
    session_cookie_samesite: str = 'lax'
    trust_forwarded_for: bool = False

    log_level: str = 'INFO'
    log_format: str = 'text'

    default_institution_name: str = 'Polícia Militar'
    recent_logs_limit: int = 20
    max_logo_bytes: int = 512 * 1024
    max_backup_bytes: int = 64 * 1024 * 1024
    backup_filename_prefix: str = 'sentinela-backup'

    @property
    def database_url_normalized(self) -> str:
        url = self.database_url.strip()
        if url.startswith('postgres://'):
            return 'postgresql+psycopg://' + url[len('postgres://') :]
        if url.startswith('postgresql://'):
            return 'postgresql+psycopg://' + url[len('postgresql://') :]
        return url


settings = Settings()
