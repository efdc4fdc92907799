"""Test the command-line interface"""

import json

import pytest
from click.testing import CliRunner

from music_catalog import cli as cli_module
from music_catalog.cli import __version__, cli
from music_catalog.core.config import ENV_OVERRIDES
from music_catalog.dispatcher import Dispatcher
from music_catalog.providers.deezer import LEGACY_API_URL, DeezerAdapter


@pytest.fixture
def runner(monkeypatch, tmp_path, isolated_logging):
    """CliRunner in an empty directory without credential variables"""
    for env_var in ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.chdir(tmp_path)
    return CliRunner()


@pytest.fixture
def deezer_only(monkeypatch, transport):
    """Make the CLI build a Deezer-only dispatcher over the fake transport"""
    monkeypatch.setattr(
        cli_module,
        "build_dispatcher",
        lambda config: Dispatcher([DeezerAdapter(transport, retries=0)], transport=transport),
    )
    return transport


class TestGlobalOptions:
    """Test options shared by every command"""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("identify", "resolve", "tracks"):
            assert command in result.output

    def test_missing_config_file(self, runner, tmp_path):
        """Test an explicit --config must exist"""
        result = runner.invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "identify", "deezer:track:1"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_invalid_config_file(self, runner, tmp_path):
        """Test invalid values in ./config.yaml stop the command"""
        (tmp_path / "config.yaml").write_text("http:\n  timeout: -1\n", encoding="utf-8")

        result = runner.invoke(cli, ["identify", "deezer:track:1"])

        assert result.exit_code == 1
        assert "http.timeout" in result.output


class TestIdentify:
    """Test the identify command"""

    def test_recognized_inputs(self, runner):
        result = runner.invoke(cli, [
            "identify",
            "https://www.deezer.com/fr/track/3135556",
            "https://open.spotify.com/intl-de/album/2noRn2Aes5aoNVsU6iWThc",
        ])

        assert result.exit_code == 0
        assert result.output.splitlines() == [
            "https://www.deezer.com/fr/track/3135556\tdeezer:track:3135556",
            "https://open.spotify.com/intl-de/album/2noRn2Aes5aoNVsU6iWThc\tspotify:album:2noRn2Aes5aoNVsU6iWThc",
        ]

    def test_unrecognized_input(self, runner):
        result = runner.invoke(cli, ["identify", "deezer:track:1", "https://example.com/x"])

        assert result.exit_code == 1
        assert "https://example.com/x\tunrecognized" in result.output


class TestResolve:
    """Test the resolve and tracks commands"""

    def test_resolve_prints_json(self, runner, deezer_only, deezer_album_data):
        """Test one input prints one JSON object"""
        deezer_only.add(f"{LEGACY_API_URL}/album/302127", deezer_album_data())

        result = runner.invoke(cli, ["resolve", "https://www.deezer.com/album/302127"])

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["type"] == "album"
        assert payload["name"] == "Discovery"
        assert payload["track_uris"] == ["deezer:track:3135553", "deezer:track:3135556"]

    def test_resolve_unrecognized(self, runner, deezer_only):
        """Test unrecognized input exits with 2 before any request"""
        result = runner.invoke(cli, ["resolve", "deezer:album:302127", "https://example.com/x"])

        assert result.exit_code == 2
        assert "Unrecognized input: https://example.com/x" in result.output
        assert deezer_only.calls == []

    def test_resolve_provider_error(self, runner, deezer_only):
        """Test a failing lookup exits with 3"""
        deezer_only.add(
            f"{LEGACY_API_URL}/album/1",
            {"error": {"type": "DataException", "message": "no data", "code": 800}},
        )

        result = runner.invoke(cli, ["resolve", "deezer:album:1"])

        assert result.exit_code == 3
        assert "deezer error" in result.output

    def test_tracks(self, runner, deezer_only, deezer_track_data, deezer_album_data):
        """Test tracks prints the album's tracks in order"""
        deezer_only.add(f"{LEGACY_API_URL}/album/302127", deezer_album_data())
        deezer_only.add(f"{LEGACY_API_URL}/track/3135553", deezer_track_data(3135553, title="Digital Love"))
        deezer_only.add(f"{LEGACY_API_URL}/track/3135556", deezer_track_data())

        result = runner.invoke(cli, ["tracks", "deezer:album:302127"])

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert [track["name"] for track in payload] == ["Digital Love", "Harder, Better, Faster, Stronger"]
        assert payload[0]["duration_ms"] == 224000
