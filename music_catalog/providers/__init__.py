"""
Provider adapters and the normalized entity model.

Each adapter recognizes its provider's URLs, URIs and short links and
resolves them to Track, Album, Artist or Playlist objects.
"""

from music_catalog.providers.apple_music import AppleMusicAdapter
from music_catalog.providers.base import ProviderAdapter
from music_catalog.providers.deezer import DeezerAdapter
from music_catalog.providers.models import (
    Album,
    Artist,
    Artwork,
    CanonicalURI,
    Copyright,
    EntityType,
    Image,
    Playlist,
    ProviderCapabilities,
    Track,
)
from music_catalog.providers.spotify import SpotifyAdapter

__all__ = [
    "ProviderAdapter",
    "SpotifyAdapter",
    "DeezerAdapter",
    "AppleMusicAdapter",
    "EntityType",
    "CanonicalURI",
    "ProviderCapabilities",
    "Track",
    "Album",
    "Artist",
    "Playlist",
    "Artwork",
    "Image",
    "Copyright",
]
