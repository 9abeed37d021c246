import json

import pytest
from sqlalchemy import create_engine, inspect

from chat_escrow.core.settings import settings
from chat_escrow.scripts import generate_keys, run_migration, upgrade_db
from chat_escrow.services.crypto import CryptoService
from chat_escrow.services.migration import MigrationEngine


def test_generate_keys_prints_both_config_formats(capsys):
    assert generate_keys.main([]) == 0

    out, err = capsys.readouterr()
    backup = json.loads(err.split("---\n", 1)[1])
    assert f"KEY ID: {backup['keyId']}" in out
    assert json.dumps(backup["privateKeyJwk"], separators=(",", ":")) in out
    assert f'"{backup["keyId"]}": ' in out
    assert "KEY ROTATION STEPS" not in out

    private_key = CryptoService.load_private_key(backup["privateKeyJwk"])
    wrapped = CryptoService.wrap_key(b"k" * 32, private_key.public_key())
    assert CryptoService.unwrap_key(wrapped, private_key) == b"k" * 32


def test_generate_keys_rotation_steps(capsys):
    generate_keys.main(["--rotate"])

    assert "KEY ROTATION STEPS" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_migration_until_done(db_session, key_store, media_store, make_v2_message, capsys):
    for index in range(5):
        make_v2_message(f"message {index}")
    engine = MigrationEngine(key_store, media_store)

    reports = await run_migration.migrate(
        db_session, engine, dry_run=False, batch_size=2, until_done=True
    )

    assert [report.stats.total for report in reports] == [2, 2, 1]
    assert reports[-1].stats.remaining == 0
    assert len(capsys.readouterr().out.strip().splitlines()) == 3


@pytest.mark.asyncio
async def test_run_migration_stops_when_nothing_progresses(
    db_session, key_store, media_store, make_v2_message, other_private_key
):
    for index in range(3):
        make_v2_message(f"broken {index}", wrap_for=other_private_key)
    engine = MigrationEngine(key_store, media_store)

    reports = await run_migration.migrate(
        db_session, engine, dry_run=False, batch_size=2, until_done=True
    )

    assert len(reports) == 1
    assert reports[0].stats.errors == 2


def test_upgrade_db_creates_schema(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'upgrade.db'}"
    monkeypatch.setattr(settings, "database_url", url)

    upgrade_db.run_upgrade_head()

    engine = create_engine(url)
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"messages", "admin_users", "alembic_version"} <= tables
