import json

from job_relay import cli
from job_relay.cli import build_adapters, build_deliverer, main
from job_relay.config import load_settings
from job_relay.delivery import CallbackDeliverer, HttpDeliverer
from job_relay.models import RawPost, SourceEntity
from job_relay.scrapers.base import FetchError
from job_relay.scrapers.telegram import TelegramAdapter
from job_relay.storage import SqliteCursorStore


def _set_env(monkeypatch, tmp_path, **extra: str) -> None:
    monkeypatch.setenv("JOB_API_URL", "http://localhost:5000/api/jobs")
    monkeypatch.setenv("FEED_TARGETS", "forhire,board:https://bbs.example.com/list")
    monkeypatch.setenv("CURSOR_PATH", str(tmp_path / "cursors.json"))
    for key, value in extra.items():
        monkeypatch.setenv(key, value)


def test_build_deliverer_selects_implementation(monkeypatch, tmp_path) -> None:
    _set_env(monkeypatch, tmp_path)
    settings = load_settings()

    http = build_deliverer(settings)
    assert isinstance(http, HttpDeliverer)
    http.close()
    assert isinstance(build_deliverer(settings, handler=lambda payload: None), CallbackDeliverer)


def test_build_adapters_adds_facebook_only_when_targeted(monkeypatch, tmp_path) -> None:
    _set_env(monkeypatch, tmp_path)
    adapters = build_adapters(load_settings())
    assert sorted(adapters) == ["board", "reddit"]

    monkeypatch.setenv("FEED_TARGETS", "facebook:4242")
    monkeypatch.setenv("FACEBOOK_ACCESS_TOKEN", "token")
    assert "facebook" in build_adapters(load_settings())


def test_healthcheck_passes_with_valid_env(monkeypatch, tmp_path, capsys) -> None:
    _set_env(monkeypatch, tmp_path)
    assert main(["healthcheck"]) == 0
    assert "healthcheck passed" in capsys.readouterr().out


def test_healthcheck_fails_without_required_env(monkeypatch, capsys) -> None:
    monkeypatch.delenv("JOB_API_URL", raising=False)
    monkeypatch.delenv("FEED_TARGETS", raising=False)
    assert main(["healthcheck"]) == 1
    assert "missing required env vars" in capsys.readouterr().out


def test_healthcheck_flags_facebook_without_token(monkeypatch, tmp_path, capsys) -> None:
    _set_env(monkeypatch, tmp_path, FEED_TARGETS="facebook:4242")
    monkeypatch.delenv("FACEBOOK_ACCESS_TOKEN", raising=False)
    assert main(["healthcheck"]) == 1
    assert "FACEBOOK_ACCESS_TOKEN" in capsys.readouterr().out


class StaticAdapter:
    feed = "fake"

    def __init__(self, posts_by_target: dict[str, list[RawPost]], failing: bool = False) -> None:
        self.posts_by_target = posts_by_target
        self.failing = failing
        self.closed = False

    def resolve(self, target: str) -> SourceEntity:
        return SourceEntity(id=f"fake:{target}", feed=self.feed, handle=target)

    def fetch(self, entity: SourceEntity, limit: int) -> list[RawPost]:
        if self.failing:
            raise FetchError(f"https://feeds.test/{entity.handle}", 503, "service unavailable")
        return self.posts_by_target.get(entity.handle, [])

    def close(self) -> None:
        self.closed = True


def _patch_run(monkeypatch, adapter: StaticAdapter) -> list[dict]:
    payloads: list[dict] = []
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)
    monkeypatch.setattr(cli, "install_signal_handlers", lambda stop_event: None)
    monkeypatch.setattr(cli, "build_adapters", lambda settings: {"fake": adapter})
    monkeypatch.setattr(cli, "build_deliverer", lambda settings: CallbackDeliverer(payloads.append))
    return payloads


def _job_post(target: str, seq: int) -> RawPost:
    return RawPost(
        source_entity_id=f"fake:{target}",
        sequence_number=seq,
        text="We are hiring a line cook, apply with your CV today",
    )


def test_run_once_delivers_and_exits_zero(monkeypatch, tmp_path, capsys) -> None:
    _set_env(monkeypatch, tmp_path, FEED_TARGETS="fake:alpha")
    adapter = StaticAdapter({"alpha": [_job_post("alpha", 3)]})
    payloads = _patch_run(monkeypatch, adapter)

    assert main(["run", "--once"]) == 0

    assert [payload["sourceLabel"] for payload in payloads] == ["fake/alpha"]
    assert json.loads((tmp_path / "cursors.json").read_text(encoding="utf-8")) == {"fake:alpha": 3}
    assert "cursor_saved=True" in capsys.readouterr().out
    assert adapter.closed is True


def test_run_once_exits_one_when_cursor_cannot_be_saved(monkeypatch, tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    _set_env(monkeypatch, tmp_path, FEED_TARGETS="fake:alpha", CURSOR_PATH=str(blocker / "cursors.json"))
    payloads = _patch_run(monkeypatch, StaticAdapter({"alpha": [_job_post("alpha", 3)]}))

    assert main(["run", "--once"]) == 1
    assert len(payloads) == 1


def test_run_once_exits_one_when_every_target_fails(monkeypatch, tmp_path) -> None:
    _set_env(monkeypatch, tmp_path, FEED_TARGETS="fake:alpha,fake:beta")
    _patch_run(monkeypatch, StaticAdapter({}, failing=True))

    assert main(["run", "--once"]) == 1


def test_run_once_with_sqlite_backend_logs_the_run(monkeypatch, tmp_path) -> None:
    db_path = tmp_path / "state.sqlite"
    _set_env(monkeypatch, tmp_path, FEED_TARGETS="fake:alpha", CURSOR_BACKEND="sqlite", CURSOR_PATH=str(db_path))
    _patch_run(monkeypatch, StaticAdapter({"alpha": [_job_post("alpha", 9)]}))

    assert main(["run", "--once"]) == 0

    with SqliteCursorStore(db_path) as store:
        assert store.load() == {"fake:alpha": 9}
        assert store.count_runs() == 1


def test_run_reports_unopenable_sqlite_path(monkeypatch, tmp_path, capsys) -> None:
    _set_env(monkeypatch, tmp_path, FEED_TARGETS="fake:alpha", CURSOR_BACKEND="sqlite", CURSOR_PATH=str(tmp_path))
    _patch_run(monkeypatch, StaticAdapter({}))

    assert main(["run", "--once"]) == 1
    assert "cannot open cursor database" in capsys.readouterr().out


def test_build_adapters_adds_telegram_when_targeted(monkeypatch, tmp_path) -> None:
    _set_env(
        monkeypatch,
        tmp_path,
        FEED_TARGETS="telegram:https://t.me/sydjobs",
        TELEGRAM_API_ID="12345",
        TELEGRAM_API_HASH="hash",
        TELEGRAM_SESSION="saved-session",
    )
    adapters = build_adapters(load_settings())
    assert isinstance(adapters["telegram"], TelegramAdapter)


def test_healthcheck_flags_telegram_without_session(monkeypatch, tmp_path, capsys) -> None:
    _set_env(monkeypatch, tmp_path, FEED_TARGETS="telegram:sydjobs", TELEGRAM_API_ID="12345", TELEGRAM_API_HASH="hash")
    monkeypatch.delenv("TELEGRAM_SESSION", raising=False)
    assert main(["healthcheck"]) == 1
    assert "TELEGRAM_SESSION" in capsys.readouterr().out
