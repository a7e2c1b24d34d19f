import pytest

from conftest import make_track
from downonspot.resolver import InputResolver, collect_pages, parse_uri
from downonspot.utils.exceptions import InvalidUri
from downonspot.utils.models import (
    AlbumRef,
    Candidates,
    Expanded,
    Other,
    Page,
    SearchCandidate,
    SpotifyUri,
    TrackRef,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("spotify:track:abc123", SpotifyUri("spotify", "track", "abc123")),
        ("  spotify:album:xyz  ", SpotifyUri("spotify", "album", "xyz")),
        (
            "https://open.spotify.com/playlist/37i9dQZF1DX?si=4f2a",
            SpotifyUri("spotify", "playlist", "37i9dQZF1DX"),
        ),
        (
            "https://open.spotify.com/intl-de/artist/0OdUWJ0sBjDrqHygGUXeCF",
            SpotifyUri("spotify", "artist", "0OdUWJ0sBjDrqHygGUXeCF"),
        ),
        ("http://open.spotify.com/show/abc/", SpotifyUri("spotify", "show", "abc")),
    ],
)
def test_parse_uri(raw, expected):
    assert parse_uri(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "spotify:track",
        "spotify::abc",
        "spotify:track:abc:extra",
        "https://example.com/track/abc",
        "https://open.spotify.com/track",
        "https://open.spotify.com/intl-fr/",
        "ftp://x/y",
        "ftp://open.spotify.com/track/abc",
    ],
)
def test_parse_uri_rejects_malformed_input(raw):
    with pytest.raises(InvalidUri):
        parse_uri(raw)


@pytest.mark.parametrize(
    "raw", ["daft punk one more time", "spotify", "artist: daft punk"]
)
def test_parse_uri_treats_other_input_as_free_text(raw):
    assert parse_uri(raw) is None


def test_uri_str_is_canonical():
    assert str(SpotifyUri("spotify", "track", "abc")) == "spotify:track:abc"


@pytest.mark.anyio
async def test_collect_pages_stops_on_empty_page():
    calls = []

    async def fetch(offset: int, limit: int) -> Page[int]:
        calls.append(offset)
        # The listing shrank after the first page
        return Page([1, 2, 3] if offset == 0 else [], 10)

    assert await collect_pages(fetch, 3) == [1, 2, 3]
    assert calls == [0, 3]


@pytest.mark.anyio
async def test_collect_pages_rereads_total():
    totals = iter([4, 6, 6])

    async def fetch(offset: int, limit: int) -> Page[int]:
        return Page(list(range(offset, offset + 2)), next(totals))

    assert await collect_pages(fetch, 2) == [0, 1, 2, 3, 4, 5]


@pytest.mark.anyio
async def test_single_track_is_not_looked_up(metadata):
    resolver = InputResolver(metadata)

    result = await resolver.resolve("spotify:track:abc123")

    assert result == Expanded([TrackRef("abc123")])
    assert metadata.calls == []


@pytest.mark.anyio
async def test_playlist_is_paged_by_100(metadata):
    metadata.playlists["p1"] = [make_track(f"t{i}") for i in range(250)]
    resolver = InputResolver(metadata)

    result = await resolver.resolve("https://open.spotify.com/playlist/p1")

    assert isinstance(result, Expanded)
    assert len(result.tracks) == 250
    assert result.tracks[0] == TrackRef("t0", "Song t0", "Artist")
    assert [call[2] for call in metadata.calls] == [0, 100, 200]
    assert {call[3] for call in metadata.calls} == {100}


@pytest.mark.anyio
async def test_playlist_drops_removed_entries(metadata):
    metadata.playlists["p1"] = [make_track("a"), None, make_track("b"), None]
    resolver = InputResolver(metadata)

    result = await resolver.resolve("spotify:playlist:p1")

    assert [t.track_id for t in result.tracks] == ["a", "b"]


@pytest.mark.anyio
async def test_album_is_paged_by_50(metadata):
    metadata.albums["al"] = [
        make_track(f"t{i}", artists=["A", "B"]) for i in range(60)
    ]
    resolver = InputResolver(metadata, separator=" & ")

    result = await resolver.resolve("spotify:album:al")

    assert len(result.tracks) == 60
    assert result.tracks[0].author == "A & B"
    assert [call[2:] for call in metadata.calls] == [(0, 50), (50, 50)]


@pytest.mark.anyio
async def test_artist_expands_every_album_without_duplicates(metadata):
    metadata.artists["ar"] = [AlbumRef("al1", "First"), AlbumRef("al2", "Second")]
    metadata.albums["al1"] = [make_track("t1"), make_track("t2")]
    metadata.albums["al2"] = [make_track("t2"), make_track("t3")]
    resolver = InputResolver(metadata)

    result = await resolver.resolve("spotify:artist:ar")

    assert [t.track_id for t in result.tracks] == ["t1", "t2", "t3"]
    assert [call[:2] for call in metadata.calls] == [
        ("artist", "ar"),
        ("album", "al1"),
        ("album", "al2"),
    ]


@pytest.mark.anyio
@pytest.mark.parametrize("kind", ["show", "episode", "user", "podcast"])
async def test_unsupported_kinds_pass_through(metadata, kind):
    resolver = InputResolver(metadata)

    result = await resolver.resolve(f"spotify:{kind}:xyz")

    assert result == Other(f"spotify:{kind}:xyz")
    assert metadata.calls == []


@pytest.mark.anyio
async def test_free_text_returns_candidates(metadata):
    metadata.search_results = [
        SearchCandidate(f"t{i}", f"Song {i}", "Artist") for i in range(10)
    ]
    resolver = InputResolver(metadata, search_limit=3)

    result = await resolver.resolve("  some song  ")

    assert result == Candidates(metadata.search_results[:3])
    assert metadata.calls == [("search", "some song", 3)]


@pytest.mark.anyio
async def test_search_without_results_is_not_an_error(metadata):
    resolver = InputResolver(metadata)

    assert await resolver.resolve("nothing matches this") == Candidates([])
