import os

import pytest

from core import factory
from platforms.linux import session as linux_session


def test_session_bus_detected_from_runtime_dir(tmp_path, monkeypatch):
    (tmp_path / "bus").touch()
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))
    monkeypatch.delenv("DBUS_SESSION_BUS_ADDRESS", raising=False)

    assert linux_session.ensure_session_bus_environment()
    assert os.environ["DBUS_SESSION_BUS_ADDRESS"] == f"unix:path={tmp_path / 'bus'}"


def test_existing_bus_address_is_kept(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))
    monkeypatch.setenv("DBUS_SESSION_BUS_ADDRESS", "unix:path=/somewhere/else")

    assert linux_session.ensure_session_bus_environment()
    assert os.environ["DBUS_SESSION_BUS_ADDRESS"] == "unix:path=/somewhere/else"


def test_missing_bus_is_reported(tmp_path, monkeypatch, caplog):
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))
    monkeypatch.delenv("DBUS_SESSION_BUS_ADDRESS", raising=False)

    assert not linux_session.ensure_session_bus_environment()
    assert "No DBus session bus" in caplog.text


def test_factory_returns_gnome_client_on_linux(monkeypatch):
    from platforms.linux.session_manager import GnomeSessionManager

    monkeypatch.setattr(factory.sys, "platform", "linux")
    manager = factory.get_session_manager(bus="SYSTEM")
    assert isinstance(manager, GnomeSessionManager)
    assert manager.bus == "SYSTEM"


def test_factory_rejects_other_platforms(monkeypatch):
    monkeypatch.setattr(factory.sys, "platform", "win32")
    with pytest.raises(NotImplementedError):
        factory.get_session_manager()
