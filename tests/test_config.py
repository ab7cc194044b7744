# tests/test_config.py
import pytest
from pydantic import ValidationError

from showcase.config import Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("ALLOWED_ROLES", raising=False)
    settings = Settings(_env_file=None)

    assert settings.MAX_GALLERY_FILES == 10
    assert settings.ROLE_FIELD == "vinculo.categoria"
    assert settings.allowed_roles_list == ["docente", "estagiario"]

def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ALLOWED_ROLES", " docente , , tecnico ")
    monkeypatch.setenv("CLEANUP_MAX_ATTEMPTS", "5")

    settings = Settings(_env_file=None)

    assert settings.allowed_roles_list == ["docente", "tecnico"]
    assert settings.CLEANUP_MAX_ATTEMPTS == 5

def test_environment_names_are_case_sensitive(monkeypatch):
    monkeypatch.setenv("max_gallery_files", "3")

    assert Settings(_env_file=None).MAX_GALLERY_FILES == 10

def test_empty_allowed_roles():
    assert Settings(_env_file=None, ALLOWED_ROLES="").allowed_roles_list == []

def test_cleanup_attempts_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, CLEANUP_MAX_ATTEMPTS=0)
