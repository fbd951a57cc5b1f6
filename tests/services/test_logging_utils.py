from __future__ import annotations

import logging

import pytest

from hypermap_indexer import logging_utils


@pytest.fixture
def captured(monkeypatch) -> list[dict]:
    calls: list[dict] = []
    monkeypatch.setattr(logging.getLogger(), "handlers", [])
    monkeypatch.setattr(logging_utils.logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    return calls


def test_level_names_are_accepted(captured) -> None:
    logging_utils.configure_logging("debug")
    logging_utils.configure_logging("nonsense")
    assert [call["level"] for call in captured] == [logging.DEBUG, logging.INFO]
    assert "handlers" not in captured[0]


def test_log_paths_add_file_handlers(captured, tmp_path) -> None:
    target = tmp_path / "logs" / "indexer.log"
    logging_utils.configure_logging(logging.WARNING, [str(target)])
    handlers = captured[0]["handlers"]
    assert target.parent.is_dir()
    assert [type(handler) for handler in handlers] == [logging.StreamHandler, logging.FileHandler]
    for handler in handlers:
        handler.close()


def test_existing_handlers_are_left_alone(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(logging.getLogger(), "handlers", [logging.NullHandler()])
    monkeypatch.setattr(logging_utils.logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    logging_utils.configure_logging("INFO")
    assert calls == []
