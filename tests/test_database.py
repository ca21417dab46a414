import pytest
from sqlalchemy import inspect
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from db import database
from db.database import DatabaseSettings, build_engine, session_scope
from db.models import Photo


@pytest.fixture
def db_env(monkeypatch):
    for key in ("DATABASE_URL", "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER",
                "DB_PASSWORD", "DB_POOL_SIZE", "DB_MAX_OVERFLOW", "DB_ECHO"):
        monkeypatch.delenv(key, raising=False)
    database.dispose_engine()
    yield monkeypatch
    database.dispose_engine()


def test_settings_prefer_database_url(db_env):
    db_env.setenv("DATABASE_URL", "sqlite:///photos.db")
    db_env.setenv("DB_PASSWORD", "ignored")

    settings = DatabaseSettings.from_env()
    assert settings.is_sqlite
    assert settings.url.database == "photos.db"


def test_settings_from_db_variables(db_env):
    db_env.setenv("DB_PASSWORD", "s3cret")
    db_env.setenv("DB_HOST", "db.internal")
    db_env.setenv("DB_POOL_SIZE", "12")

    settings = DatabaseSettings.from_env()

    assert settings.url.drivername == "postgresql"
    assert settings.url.host == "db.internal"
    assert settings.url.port == 5432
    assert settings.url.password == "s3cret"
    assert settings.pool_size == 12
    assert "s3cret" not in settings.url.render_as_string(hide_password=True)


def test_settings_require_password(db_env):
    with pytest.raises(ValueError):
        DatabaseSettings.from_env()


def test_global_engine_and_init(db_env, tmp_path):
    db_env.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'lib.db'}")

    assert database.verify_connection() is True
    assert database.init_db() is True
    assert "photos" in inspect(database.get_engine()).get_table_names()
    assert database.get_db_info()["url"].endswith("lib.db")


def test_session_scope_rolls_back(tmp_path):
    engine = build_engine(DatabaseSettings(url=make_url(f"sqlite:///{tmp_path / 'r.db'}")))
    Photo.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)

    with pytest.raises(RuntimeError):
        with session_scope(factory) as session:
            session.add(Photo(
                owner_id="alice", file_name="f.jpg", path="/uploads/f.jpg",
                thumb_path="/uploads/f.jpg", hash="0" * 64,
            ))
            session.flush()
            raise RuntimeError("abort")

    with session_scope(factory) as session:
        assert session.query(Photo).count() == 0
    engine.dispose()
