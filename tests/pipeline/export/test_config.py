"""Tests for ExportConfig loading, validation and template selection."""

from pathlib import Path

import pytest

from company_export.exceptions import ConfigurationError
from company_export.pipeline.export.config import ExportConfig
from company_export.pipeline.sources.models import Organization


def _config(tmp_path: Path, **overrides):
    return ExportConfig(env_file=tmp_path / "absent.env", **overrides)


def test_defaults(tmp_path: Path):
    cfg = _config(tmp_path)
    assert cfg.organization_chunk_size == 50
    assert cfg.invoice_window_size == 100
    assert cfg.render_failure_policy == "skip"
    assert cfg.workers == 1
    assert cfg.default_template == "invoice1"
    assert cfg.template_overrides == {}
    assert cfg.reclaim_per_document is True


def test_environment_values(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("EXPORT_ORGANIZATION_CHUNK_SIZE", "5")
    monkeypatch.setenv("EXPORT_RENDER_FAILURE_POLICY", "ABORT")
    monkeypatch.setenv("EXPORT_RECLAIM_PER_DOCUMENT", "no")
    monkeypatch.setenv("EXPORT_TEMPLATE_OVERRIDES", '{"7": "invoice-custom"}')
    cfg = _config(tmp_path)
    assert cfg.organization_chunk_size == 5
    assert cfg.render_failure_policy == "abort"
    assert cfg.reclaim_per_document is False
    assert cfg.template_overrides == {"7": "invoice-custom"}


def test_overrides_win_over_environment(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("EXPORT_WORKERS", "3")
    assert _config(tmp_path, workers=2).workers == 2


def test_env_file_does_not_replace_existing_variables(monkeypatch, tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text("EXPORT_WORKERS=4\nEXPORT_INVOICE_WINDOW_SIZE=9\n", encoding="utf-8")
    monkeypatch.setenv("EXPORT_WORKERS", "2")
    cfg = ExportConfig(env_file=env_file)
    assert cfg.workers == 2
    assert cfg.invoice_window_size == 9


@pytest.mark.parametrize(
    "overrides",
    [
        {"organization_chunk_size": 0},
        {"invoice_window_size": -1},
        {"workers": 0},
        {"max_retries": -1},
        {"render_failure_policy": "retry"},
        {"template_overrides": "[1, 2]"},
        {"reclaim_per_document": "maybe"},
        {"bogus": 1},
    ],
)
def test_invalid_values_raise(tmp_path: Path, overrides):
    with pytest.raises(ConfigurationError):
        _config(tmp_path, **overrides)


def test_invalid_environment_number(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("EXPORT_INVOICE_WINDOW_SIZE", "lots")
    with pytest.raises(ConfigurationError) as excinfo:
        _config(tmp_path)
    assert "EXPORT_INVOICE_WINDOW_SIZE" in excinfo.value.message


def test_template_for_prefers_id_then_name_then_default(tmp_path: Path):
    cfg = _config(
        tmp_path,
        template_overrides={"7": "invoice-custom", "Edge Ltd": "invoice2", "8": "invoice3"},
    )
    assert cfg.template_for(Organization(id=7, name="Edge Ltd")) == "invoice-custom"
    assert cfg.template_for(Organization(id=9, name="Edge Ltd")) == "invoice2"
    assert cfg.template_for(Organization(id=10, name="Other")) == "invoice1"
