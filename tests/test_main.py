import pytest

from finance_copilot.main import build_parser, main


@pytest.fixture
def database_url(tmp_path, monkeypatch: pytest.MonkeyPatch) -> str:
    url = f"sqlite:///{tmp_path / 'finance.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return url


def test_seed_rules_is_idempotent(database_url: str, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["seed-rules"]) == 0
    assert main(["seed-rules"]) == 0
    out = capsys.readouterr().out
    assert "Seeded 35 category rules." in out
    assert "Seeded 0 category rules." in out


def test_init_db(database_url: str, tmp_path) -> None:
    assert main(["init-db", "--seed"]) == 0
    assert (tmp_path / "finance.db").exists()


def test_backfill_needs_api_key(database_url: str) -> None:
    assert main(["backfill", "--dry-run"]) == 1


def test_serve_arguments() -> None:
    args = build_parser().parse_args(["serve", "--port", "9000"])
    assert args.host == "0.0.0.0"
    assert args.port == 9000


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
