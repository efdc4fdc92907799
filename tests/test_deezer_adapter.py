"""Test the Deezer adapter against an in-memory transport"""

import asyncio

import pytest

from music_catalog.core.exceptions import (
    ProviderError,
    QuotaExceededError,
    RemoteAPIError,
    UnimplementedCapabilityError,
)
from music_catalog.providers.deezer import (
    GATEWAY_API_URL,
    LEGACY_API_URL,
    DeezerAdapter,
    _page_limit,
)
from music_catalog.providers.models import Album, CanonicalURI, EntityType, Track

QUOTA_BODY = {"error": {"type": "Exception", "message": "Quota limit exceeded", "code": 4}}
TRACK_URL = f"{LEGACY_API_URL}/track/3135556"
ALBUM_URL = f"{LEGACY_API_URL}/album/302127"


@pytest.fixture
def adapter(transport):
    return DeezerAdapter(transport, retries=4)


class TestParseUri:
    """Test recognition of Deezer inputs"""

    def test_web_url_with_locale(self, adapter):
        """Test a localized URL keeps its locale as storefront"""
        uri = adapter.parse_uri("https://www.deezer.com/fr/album/302127?utm_source=x")
        assert uri == CanonicalURI("deezer", EntityType.ALBUM, "302127")
        assert uri.storefront == "fr"
        assert uri.url == "https://www.deezer.com/fr/album/302127"

    def test_web_url_without_locale(self, adapter):
        """Test the default storefront is used when the URL has none"""
        uri = adapter.parse_uri("deezer.com/track/3135556")
        assert uri.uri == "deezer:track:3135556"
        assert uri.storefront == "en"

    def test_provider_uri(self, adapter):
        """Test deezer:type:id"""
        assert adapter.parse_uri("deezer:playlist:908622995").entity_type is EntityType.PLAYLIST

    def test_short_link(self, adapter):
        """Test link.deezer.com short links are flagged for expansion"""
        uri = adapter.parse_uri("link.deezer.com/s/30Bqd0WA8jnxB2PIMumVG")
        assert uri.is_short_link
        assert uri.entity_type is None
        assert uri.url == "https://link.deezer.com/s/30Bqd0WA8jnxB2PIMumVG"

    def test_foreign_and_garbage_input(self, adapter):
        """Test other providers and junk are not recognized"""
        assert adapter.parse_uri("https://open.spotify.com/track/4cOdK2wGLETKBW3PvgPWqT") is None
        assert adapter.parse_uri("deezer:episode:1") is None
        assert adapter.parse_uri("") is None
        assert not adapter.validate_type("hello")
        assert adapter.identify_type("deezer:artist:27") is EntityType.ARTIST

    def test_page_limit(self):
        """Test list page sizes"""
        assert _page_limit(None) == 300
        assert _page_limit(40) == 40
        assert _page_limit(2000) == 500


class TestTrackResolution:
    """Test track lookups, caching and album enrichment"""

    @pytest.mark.asyncio
    async def test_track_with_album_fields(self, adapter, transport, deezer_track_data, deezer_album_data):
        """Test a track is normalized and enriched from its album"""
        transport.add(TRACK_URL, deezer_track_data())
        transport.add(ALBUM_URL, deezer_album_data())

        track = await adapter.get_track("https://www.deezer.com/en/track/3135556")

        assert isinstance(track, Track)
        assert track.uri == "deezer:track:3135556"
        assert track.name == "Harder, Better, Faster, Stronger"
        assert track.artists == ("Daft Punk",)
        assert track.duration_ms == 224000
        assert track.isrc == "GBDUW0000059"
        assert track.album == "Discovery"
        assert track.album_uri == "deezer:album:302127"
        assert track.total_tracks == 2
        assert track.label == "Parlophone (France)"
        assert track.genres == ("Dance",)
        assert track.content_rating == "clean"
        assert transport.calls[0]["query"]["output"] == "json"

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_fetch(self, adapter, transport, deezer_track_data, deezer_album_data):
        """Test two concurrent lookups of one track hit the network once"""
        transport.add(TRACK_URL, deezer_track_data())
        transport.add(ALBUM_URL, deezer_album_data())

        first, second = await asyncio.gather(
            adapter.get_track("deezer:track:3135556"),
            adapter.get_track("https://www.deezer.com/track/3135556"),
        )

        assert first is second
        assert transport.count(TRACK_URL) == 1

    @pytest.mark.asyncio
    async def test_album_fetched_once_for_sibling_tracks(self, adapter, transport, deezer_track_data, deezer_album_data):
        """Test tracks of one album resolve the album a single time"""
        transport.add(f"{LEGACY_API_URL}/track/3135553", deezer_track_data(3135553, title="One More Time"))
        transport.add(TRACK_URL, deezer_track_data())
        transport.add(ALBUM_URL, deezer_album_data())

        tracks = await adapter.get_track(["deezer:track:3135553", "deezer:track:3135556"])

        assert [t.name for t in tracks] == ["One More Time", "Harder, Better, Faster, Stronger"]
        assert transport.count(ALBUM_URL) == 1

    @pytest.mark.asyncio
    async def test_quota_error_in_http_200_is_retried(self, adapter, transport, deezer_track_data, deezer_album_data):
        """Test a quota payload delivered with HTTP 200 is retried until it succeeds"""
        transport.add(TRACK_URL, QUOTA_BODY, QUOTA_BODY, deezer_track_data())
        transport.add(ALBUM_URL, deezer_album_data())

        track = await adapter.get_track("deezer:track:3135556")

        assert track.id == "3135556"
        assert transport.count(TRACK_URL) == 3

    @pytest.mark.asyncio
    async def test_quota_exhaustion_single_raises(self, transport):
        """Test a single lookup raises after retries + 1 attempts"""
        adapter = DeezerAdapter(transport, retries=2)
        transport.add(TRACK_URL, QUOTA_BODY)

        with pytest.raises(QuotaExceededError) as exc_info:
            await adapter.get_track("deezer:track:3135556")

        assert exc_info.value.attempts == 3
        assert exc_info.value.http_status is None
        assert transport.count(TRACK_URL) == 3

    @pytest.mark.asyncio
    async def test_quota_exhaustion_list_yields_none(self, transport, deezer_track_data, deezer_album_data):
        """Test a list lookup maps the exhausted id to None and keeps siblings"""
        adapter = DeezerAdapter(transport, retries=0)
        transport.add(TRACK_URL, QUOTA_BODY)
        transport.add(f"{LEGACY_API_URL}/track/3135553", deezer_track_data(3135553))
        transport.add(ALBUM_URL, deezer_album_data())

        tracks = await adapter.get_track(["deezer:track:3135556", "deezer:track:3135553"])

        assert tracks[0] is None
        assert tracks[1].id == "3135553"

    @pytest.mark.asyncio
    async def test_malformed_payload_isolated_in_list(self, adapter, transport, deezer_track_data, deezer_album_data):
        """Test a payload that cannot be normalized yields None and keeps siblings"""
        broken = deezer_track_data(3135553)
        del broken["id"]
        transport.add(f"{LEGACY_API_URL}/track/3135553", broken)
        transport.add(TRACK_URL, deezer_track_data())
        transport.add(ALBUM_URL, deezer_album_data())

        tracks = await adapter.get_track(["deezer:track:3135556", "deezer:track:3135553"])

        assert tracks[0].id == "3135556"
        assert tracks[1] is None

    @pytest.mark.asyncio
    async def test_malformed_payload_single_raises_provider_error(self, adapter, transport, deezer_track_data):
        """Test a single lookup reports the normalization failure as a ProviderError"""
        broken = deezer_track_data(album=None)
        del broken["id"]
        transport.add(TRACK_URL, broken)

        with pytest.raises(ProviderError) as exc_info:
            await adapter.get_track("deezer:track:3135556")

        assert exc_info.value.provider == "deezer"
        assert exc_info.value.details["uris"] == ["deezer:track:3135556"]
        assert exc_info.value.details["error_type"] == "KeyError"
        assert isinstance(exc_info.value.__cause__, KeyError)

    @pytest.mark.asyncio
    async def test_other_error_payload_not_retried(self, adapter, transport):
        """Test a non-quota error payload fails immediately"""
        transport.add(TRACK_URL, {"error": {"type": "DataException", "message": "no data", "code": 800}})

        with pytest.raises(RemoteAPIError) as exc_info:
            await adapter.get_track("deezer:track:3135556")

        assert not isinstance(exc_info.value, QuotaExceededError)
        assert exc_info.value.code == 800
        assert exc_info.value.remote_message == "no data"
        assert transport.count(TRACK_URL) == 1

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, adapter, transport, deezer_track_data, deezer_album_data):
        """Test a failed lookup is fetched again on the next request"""
        transport.add(
            TRACK_URL,
            {"error": {"type": "DataException", "message": "no data", "code": 800}},
            deezer_track_data(),
        )
        transport.add(ALBUM_URL, deezer_album_data())

        assert await adapter.get_track(["deezer:track:3135556"]) == [None]
        assert (await adapter.get_track("deezer:track:3135556")).id == "3135556"

    @pytest.mark.asyncio
    async def test_short_link_expansion(self, adapter, transport, deezer_track_data, deezer_album_data):
        """Test a short link is expanded, parsed and resolved"""
        transport.redirects["https://link.deezer.com/s/30Bqd0WA8jnxB2PIMumVG"] = (
            "https://www.deezer.com/fr/track/3135556?host=0&utm_campaign=clipboard-generic"
        )
        transport.add(TRACK_URL, deezer_track_data())
        transport.add(ALBUM_URL, deezer_album_data())

        canonical = await adapter.canonicalize("https://link.deezer.com/s/30Bqd0WA8jnxB2PIMumVG")
        track = await adapter.get_track("https://link.deezer.com/s/30Bqd0WA8jnxB2PIMumVG")

        assert canonical.uri == "deezer:track:3135556"
        assert canonical.raw == "https://link.deezer.com/s/30Bqd0WA8jnxB2PIMumVG"
        assert track.id == "3135556"

    @pytest.mark.asyncio
    async def test_dead_short_link(self, adapter):
        """Test a short link that does not expand resolves to None"""
        assert await adapter.get_track("https://link.deezer.com/s/deadbeef") is None

    @pytest.mark.asyncio
    async def test_wrong_entity_type_is_none(self, adapter, transport):
        """Test asking for a track with an album URI yields None without a request"""
        assert await adapter.get_track("deezer:album:302127") is None
        assert transport.calls == []


class TestAlbumResolution:
    """Test album normalization and gateway enrichment"""

    @pytest.mark.asyncio
    async def test_album_without_gateway_data(self, adapter, transport, deezer_album_data):
        """Test the album is still returned when the gateway is unavailable"""
        transport.add(ALBUM_URL, deezer_album_data())

        album = await adapter.get_album("deezer:album:302127")

        assert isinstance(album, Album)
        assert album.album_type == "album"
        assert album.copyrights == ()
        assert album.total_discs == 1
        assert [u.id for u in album.track_uris] == ["3135553", "3135556"]
        assert transport.count(GATEWAY_API_URL) == 1

    @pytest.mark.asyncio
    async def test_gateway_copyright_and_discs(self, adapter, transport, deezer_album_data):
        """Test producer line and disc count come from the gateway page"""
        def gateway(call):
            if call["query"]["method"] == "deezer.getUserData":
                return {"error": [], "results": {"checkForm": "token123", "SESSION_ID": "sid456"}}
            return {
                "error": {},
                "results": {
                    "DATA": {"PRODUCER_LINE": "(P) 2001 Daft Life Ltd."},
                    "SONGS": {"data": [{"DISK_NUMBER": "1"}, {"DISK_NUMBER": "2"}]},
                },
            }

        transport.add(GATEWAY_API_URL, gateway)
        transport.add(ALBUM_URL, deezer_album_data())

        album = await adapter.get_album("deezer:album:302127")

        assert album.copyrights[0].text == "(P) 2001 Daft Life Ltd."
        assert album.copyrights[0].kind == "P"
        assert album.total_discs == 2

        page_call = [c for c in transport.calls if c["url"] == GATEWAY_API_URL][-1]
        assert page_call["query"]["api_token"] == "token123"
        assert page_call["headers"]["Cookie"] == "sid=sid456"
        assert page_call["json"]["alb_id"] == "302127"

    @pytest.mark.asyncio
    async def test_compilation_and_single(self, adapter, transport, deezer_album_data):
        """Test Various Artists albums are compilations and record_type single is a single"""
        transport.add(ALBUM_URL, deezer_album_data(artist={"id": 5080, "name": "Various Artists"}))
        transport.add(f"{LEGACY_API_URL}/album/1", deezer_album_data(1, record_type="single"))

        compilation, single = await adapter.get_album(["deezer:album:302127", "deezer:album:1"])

        assert compilation.album_type == "compilation"
        assert compilation.compilation
        assert single.album_type == "single"

    @pytest.mark.asyncio
    async def test_track_list_collated_when_truncated(self, adapter, transport, deezer_album_data):
        """Test the full track list is fetched when the embedded one is short"""
        transport.add(ALBUM_URL, deezer_album_data(track_ids=(1, 2), nb_tracks=3))
        transport.add(f"{ALBUM_URL}/tracks", {"data": [{"id": 1}, {"id": 2}, {"id": 3}]})

        album = await adapter.get_album("deezer:album:302127")

        assert [u.id for u in album.track_uris] == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_cover_sizes(self, adapter, transport, deezer_album_data):
        """Test cover URLs are rendered from the template and clamped"""
        transport.add(ALBUM_URL, deezer_album_data())

        album = await adapter.get_album("deezer:album:302127")

        assert album.get_image(500, 500).endswith("/500x500-000000-80-0-0.jpg")
        assert album.get_image(3000, 3000).endswith("/1800x1800-000000-80-0-0.jpg")


class TestCollections:
    """Test playlist pagination and artist album lists"""

    @pytest.mark.asyncio
    async def test_playlist_follows_next_urls(self, adapter, transport):
        """Test playlist tracks are collated through next URLs"""
        playlist_url = f"{LEGACY_API_URL}/playlist/908622995"
        transport.add(playlist_url, {
            "id": 908622995,
            "title": "En mode 90",
            "nb_tracks": 3,
            "fans": 1000,
            "public": True,
            "creator": {"id": 2529, "name": "Deezer Editor"},
        })

        def tracks_page(call):
            if call["query"]["index"] == 0:
                return {
                    "data": [{"id": 1}, {"id": 2}],
                    "next": f"{playlist_url}/tracks?limit=3&index=2",
                }
            return {"data": [{"id": 3}]}

        transport.add(f"{playlist_url}/tracks", tracks_page)

        playlist = await adapter.get_playlist("https://www.deezer.com/us/playlist/908622995")

        assert playlist.name == "En mode 90"
        assert playlist.type == "Public"
        assert playlist.owner_name == "Deezer Editor"
        assert [u.id for u in playlist.track_uris] == ["1", "2", "3"]
        indexes = [c["query"]["index"] for c in transport.calls if c["url"] == f"{playlist_url}/tracks"]
        assert indexes == [0, 2]
        assert transport.calls[0]["query"]["limit"] == 1

    @pytest.mark.asyncio
    async def test_non_playlist_has_no_tracks(self, adapter, transport):
        """Test get_playlist_tracks of a non-playlist input is empty"""
        assert await adapter.get_playlist_tracks("deezer:album:302127") == []
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_missing_playlist_raises(self, adapter, transport):
        """Test the lookup error of an unknown playlist reaches the caller"""
        transport.add(
            f"{LEGACY_API_URL}/playlist/1",
            {"error": {"type": "DataException", "message": "no data", "code": 800}},
        )
        with pytest.raises(RemoteAPIError):
            await adapter.get_playlist_tracks("deezer:playlist:1")

    @pytest.mark.asyncio
    async def test_artist_albums_listed_once(self, adapter, transport, deezer_album_data):
        """Test the artist's album list is cached separately from albums"""
        transport.add(f"{LEGACY_API_URL}/artist/27", {"id": 27, "name": "Daft Punk", "nb_album": 2, "nb_fan": 5})
        transport.add(f"{LEGACY_API_URL}/artist/27/albums", {"data": [{"id": 302127}, {"id": 1}]})
        transport.add(ALBUM_URL, deezer_album_data())
        transport.add(f"{LEGACY_API_URL}/album/1", deezer_album_data(1, title="Homework"))

        albums = await adapter.get_artist_albums("deezer:artist:27")
        again = await adapter.get_artist_albums("deezer:artist:27")

        assert [a.name for a in albums] == ["Discovery", "Homework"]
        assert again == albums
        assert transport.count(f"{LEGACY_API_URL}/artist/27/albums") == 1


class TestCapabilities:
    """Test the auth surface Deezer does not have"""

    @pytest.mark.asyncio
    async def test_no_login(self, adapter):
        """Test Deezer needs no login and refuses the auth calls"""
        assert not adapter.capabilities.requires_auth
        assert adapter.capabilities.supports_short_links
        assert await adapter.is_authed()
        assert not adapter.can_try_login()
        with pytest.raises(UnimplementedCapabilityError):
            await adapter.login()
        with pytest.raises(UnimplementedCapabilityError):
            adapter.get_props()
