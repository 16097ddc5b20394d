import asyncio

import pytest

from tableside import Config, with_database
from tableside.cli import build_parser, main
from tests.conftest import ok


@pytest.fixture
def database_url(tmp_path, monkeypatch) -> str:
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("TABLESIDE_DATABASE_URL", url)
    return url


def test_parser() -> None:
    args = build_parser().parse_args(["grant-staff", "owner@example.com", "--create"])
    assert (args.command, args.email, args.create) == ("grant-staff", "owner@example.com", True)

    with pytest.raises(SystemExit):
        build_parser().parse_args(["purge-declined"])


def test_grant_staff(database_url: str, capsys) -> None:
    assert main(["grant-staff", "owner@example.com"]) == 1
    assert "not found" in capsys.readouterr().err

    assert main(["grant-staff", "Owner@Example.com", "--create"]) == 0
    assert "owner@example.com" in capsys.readouterr().out

    async def lookup():
        restaurant = await with_database(Config().with_database_url(database_url))
        try:
            return ok(await restaurant.identities.by_email("owner@example.com"))
        finally:
            await restaurant.close()

    assert asyncio.run(lookup()).is_staff


def test_sweep_and_purge(database_url: str, capsys) -> None:
    assert main(["sweep"]) == 0
    assert "retired 0 bookings" in capsys.readouterr().out

    assert main(["purge-declined", "--as", "ghost@example.com"]) == 1

    main(["grant-staff", "owner@example.com", "--create"])
    capsys.readouterr()
    assert main(["purge-declined", "--as", "owner@example.com"]) == 0
    assert "deleted 0 declined bookings" in capsys.readouterr().out
