import pytest

from confcall.config import CallSettings, SettingsError, load_settings


def test_bundled_default_profile_matches_builtin_defaults() -> None:
    assert load_settings("default") == CallSettings()


def test_bundled_profiles_override_selected_keys() -> None:
    settings = load_settings("loopback")

    assert settings.announce_interval == 0.5
    assert settings.api_port == 8081
    assert settings.announce_port == 9999


def test_missing_file_yields_defaults(tmp_path) -> None:
    settings = load_settings("anything", tmp_path / "missing.yaml")

    assert settings.announce_port == 9999
    assert settings.announce_interval == 2.0
    assert settings.media_base_port == 10000
    assert settings.orphan_ttl == 30.0
    assert settings.max_orphans == 64
    assert settings.rtp_latency_ms == 10
    assert settings.video_bitrate == 50_000_000


def test_unknown_profile_raises(tmp_path) -> None:
    path = tmp_path / "profiles.yaml"
    path.write_text("default:\n  announce_port: 9000\n")

    with pytest.raises(SettingsError):
        load_settings("studio", path)


@pytest.mark.parametrize(
    "body",
    [
        "default:\n  announce_interval: 0\n",
        "default:\n  bogus_key: 1\n",
        "default: [1, 2]\n",
        "default: {unbalanced\n",
    ],
)
def test_invalid_profiles_raise(tmp_path, body: str) -> None:
    path = tmp_path / "profiles.yaml"
    path.write_text(body)

    with pytest.raises(SettingsError):
        load_settings("default", path)


def test_empty_profile_uses_defaults(tmp_path) -> None:
    path = tmp_path / "profiles.yaml"
    path.write_text("quiet:\n")

    assert load_settings("quiet", path) == CallSettings()
