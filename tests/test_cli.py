from pathlib import Path

import pytest

from tools import run_session


class _FakeSession:
    created = []

    def __init__(self, settings, options):
        self.settings = settings
        self.options = options
        _FakeSession.created.append(self)

    async def run(self):
        return 1


@pytest.fixture
def fake_session(monkeypatch):
    _FakeSession.created = []
    monkeypatch.setattr(run_session, "Session", _FakeSession)
    monkeypatch.setattr(run_session.logging, "basicConfig", lambda **kwargs: None)
    return _FakeSession


def test_flags_reach_settings_and_options(fake_session, tmp_path):
    code = run_session.main(
        [
            "https://moodle.caseine.org/mod/vpl/view.php?id=42",
            "https://moodle2025.uca.fr/mod/quiz/view.php?id=3",
            "--ask-llm",
            "--manual-login",
            "--auto-submit",
            "--llm-retries",
            "2",
            "--log-dir",
            str(tmp_path),
        ]
    )
    assert code == 1
    (session,) = fake_session.created
    assert session.options.urls == [
        "https://moodle.caseine.org/mod/vpl/view.php?id=42",
        "https://moodle2025.uca.fr/mod/quiz/view.php?id=3",
    ]
    assert session.options.ask_llm is True
    assert session.options.semi_manual is True
    assert session.settings.auto_submit is True
    assert session.settings.llm_retries == 2
    assert session.settings.log_dir == Path(str(tmp_path))


def test_debug_from_needs_no_url(fake_session, tmp_path):
    snapshot = tmp_path / "page.html"
    run_session.main(["--debug-from", str(snapshot)])
    assert fake_session.created[0].options.debug_from == snapshot
    assert fake_session.created[0].options.urls == []


def test_url_or_debug_file_is_required(fake_session):
    with pytest.raises(SystemExit) as excinfo:
        run_session.main([])
    assert excinfo.value.code == 2
    assert fake_session.created == []


def test_invalid_configuration_exits_fatal(fake_session, monkeypatch, capsys):
    monkeypatch.setattr(run_session, "load_settings", _raise_config_error)
    assert run_session.main(["https://moodle2025.uca.fr/mod/quiz/view.php?id=3"]) == 2
    assert "ERROR: AUTO_SUBMIT must be a boolean" in capsys.readouterr().err


def _raise_config_error(overrides):
    raise RuntimeError("AUTO_SUBMIT must be a boolean (true/false), got 'maybe'")
