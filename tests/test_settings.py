from pathlib import Path

import pytest

from crpt_api.admission import WindowUnit
from crpt_api.errors import ConfigurationError
from crpt_api.runtime_config import load_runtime_config, set_current_runtime_config
from crpt_api.settings import Settings


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CRPT_BASE_URL", "CRPT_SIGNATURE", "CRPT_MAX_REQUESTS_PER_WINDOW"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.base_url == "https://ismp.crpt.ru"
    assert settings.timeout_s == 10.0
    assert settings.window_unit == "second"
    assert settings.max_requests_per_window == 5
    assert settings.signature == ""


def test_settings_read_prefixed_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRPT_WINDOW_UNIT", "minute")
    monkeypatch.setenv("CRPT_MAX_REQUESTS_PER_WINDOW", "30")
    monkeypatch.setenv("CRPT_SIGNATURE", "env-signature")

    settings = Settings(_env_file=None)
    config = settings.rate_limit()

    assert config.window_unit is WindowUnit.MINUTE
    assert config.max_requests_per_window == 30
    assert settings.resolve_signature() == "env-signature"


def test_settings_rate_limit_rejects_zero() -> None:
    settings = Settings(_env_file=None, max_requests_per_window=0)

    with pytest.raises(ConfigurationError):
        settings.rate_limit()


def test_resolve_signature_from_file(tmp_path: Path) -> None:
    plain = tmp_path / "sig.txt"
    plain.write_text('"plain-signature"\n', encoding="utf-8")
    keyed = tmp_path / "sig.env"
    keyed.write_text("CRPT_SIGNATURE=keyed-signature\n", encoding="utf-8")
    wrong_key = tmp_path / "other.env"
    wrong_key.write_text("OTHER=value\n", encoding="utf-8")

    assert Settings(_env_file=None, signature_file=str(plain)).resolve_signature() == (
        "plain-signature"
    )
    assert Settings(_env_file=None, signature_file=str(keyed)).resolve_signature() == (
        "keyed-signature"
    )
    assert Settings(_env_file=None, signature_file=str(wrong_key)).resolve_signature() == ""
    assert (
        Settings(_env_file=None, signature_file=str(tmp_path / "missing")).resolve_signature()
        == ""
    )


def _clear_crpt_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CRPT_BASE_URL",
        "CRPT_TIMEOUT_S",
        "CRPT_WINDOW_UNIT",
        "CRPT_MAX_REQUESTS_PER_WINDOW",
        "CRPT_SIGNATURE",
        "CRPT_SIGNATURE_FILE",
    ):
        monkeypatch.delenv(name, raising=False)


def test_settings_from_runtime(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_crpt_env(monkeypatch)
    config_path = tmp_path / "runtime.toml"
    config_path.write_text(
        "\n".join(
            [
                "[api]",
                'base_url = "https://sandbox.crpt.test"',
                "timeout_s = 3",
                'signature_file = "SIGNATURE.ignore"',
                "",
                "[rate_limit]",
                'window_unit = "hour"',
                "max_requests_per_window = 100",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    (tmp_path / "SIGNATURE.ignore").write_text("file-signature\n", encoding="utf-8")

    set_current_runtime_config(load_runtime_config(config_path))
    try:
        settings = Settings.from_runtime()
    finally:
        set_current_runtime_config(None)

    assert settings.base_url == "https://sandbox.crpt.test"
    assert settings.timeout_s == 3.0
    assert settings.rate_limit().window_unit is WindowUnit.HOUR
    assert settings.rate_limit().max_requests_per_window == 100
    assert settings.resolve_signature() == "file-signature"


def test_settings_from_runtime_env_beats_file_and_overrides_beat_env(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _clear_crpt_env(monkeypatch)
    monkeypatch.setenv("CRPT_BASE_URL", "https://env.crpt.test")
    monkeypatch.setenv("CRPT_MAX_REQUESTS_PER_WINDOW", "7")
    config_path = tmp_path / "runtime.toml"
    config_path.write_text(
        "\n".join(
            [
                "[api]",
                'base_url = "https://file.crpt.test"',
                "timeout_s = 4",
                "",
                "[rate_limit]",
                'window_unit = "minute"',
                "max_requests_per_window = 50",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    set_current_runtime_config(load_runtime_config(config_path))
    try:
        from_env = Settings.from_runtime()
        overridden = Settings.from_runtime(max_requests_per_window=2, base_url=None)
    finally:
        set_current_runtime_config(None)

    assert from_env.base_url == "https://env.crpt.test"
    assert from_env.max_requests_per_window == 7
    assert from_env.timeout_s == 4.0
    assert from_env.window_unit == "minute"
    assert overridden.max_requests_per_window == 2
    assert overridden.base_url == "https://env.crpt.test"
