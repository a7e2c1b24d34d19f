"""Path building utilities for downloaded tracks.

The canonical output location of a track is derived from its metadata and
the configured file name template. The same function is used for the
already-downloaded check and for the final write, so both always agree.
"""

import re
from pathlib import Path

from .models import AudioFormat, TrackMeta
from .utils import fix_byte_limit, sanitise_name

_PLACEHOLDER = re.compile(r"%([A-Za-z]+)%")


def build_track_tags(track: TrackMeta, separator: str) -> dict[str, str]:
    """Build sanitized template values for a track.

    Args:
        track: Track metadata.
        separator: String used to join multiple artist names.

    Returns:
        Mapping of placeholder names to sanitized values.
    """
    album_artists = track.album_artists or track.artists
    values = {
        "title": track.title,
        "artist": track.author(separator),
        "album": track.album,
        "albumArtist": separator.join(album_artists),
        "track": str(track.track_number) if track.track_number else "",
        "disc": str(track.disc_number) if track.disc_number else "",
        "year": track.release_year,
        "id": track.track_id,
    }
    return {k: sanitise_name(v) for k, v in values.items()}


def render_template(template: str, tags: dict[str, str]) -> str:
    """Substitutes ``%name%`` placeholders in a template.

    Unknown placeholders are left untouched.

    Args:
        template: File name template.
        tags: Placeholder values.

    Returns:
        The rendered string.
    """
    return _PLACEHOLDER.sub(lambda m: tags.get(m.group(1), m.group(0)), template)


class PathBuilder:
    """Handles output path construction for tracks."""

    def __init__(
        self,
        base_path: str | Path,
        filename_template: str,
        audio_format: AudioFormat,
        separator: str = ", ",
    ) -> None:
        """Initialize path builder.

        Args:
            base_path: Output directory.
            filename_template: File name template with ``%name%`` placeholders.
            audio_format: Output format, which decides the extension.
            separator: String used to join multiple artist names.
        """
        self._base_path = Path(base_path)
        self._template = filename_template
        self._format = audio_format
        self._separator = separator

    @property
    def base_path(self) -> Path:
        """Get the output directory."""
        return self._base_path

    def build_track_path(self, track: TrackMeta) -> Path:
        """Build the canonical output path for a track.

        Args:
            track: Track metadata.

        Returns:
            Absolute path of the finished file.
        """
        name = render_template(self._template, build_track_tags(track, self._separator))
        name = name.strip() or sanitise_name(track.track_id)
        extension = self._format.extension
        stem = fix_byte_limit(str(self._base_path / name), 250 - len(extension) - 1)
        return Path(f"{stem}.{extension}")
