"""Audio file tagging module with container-specific handlers.

This module writes track metadata into finished files for the two output
containers (Ogg Vorbis and MP3) through mutagen.
"""

import logging
from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

import msgspec
from mutagen import MutagenError
from mutagen.easyid3 import EasyID3
from mutagen.mp3 import EasyMP3
from mutagen.oggvorbis import OggVorbis

from .utils.exceptions import TagSavingFailure
from .utils.models import AudioFormat, TrackMeta

logger = logging.getLogger(__name__)


@runtime_checkable
class SupportsTagging(Protocol):
    """Protocol for objects that support basic tagging operations."""

    def __setitem__(self, key: str, value: object) -> None: ...
    def __getitem__(self, key: str) -> object: ...
    def save(self) -> None: ...


class TaggingContext(msgspec.Struct, frozen=True):
    """Context object containing all tagging-related data.

    Attributes:
        file_path: Path to the audio file.
        meta: Track metadata.
        audio_format: Container of the file.
        separator: String used to join multiple artist names.
        id3v24: Write ID3 v2.4 instead of v2.3 (MP3 only).
    """

    file_path: str
    meta: TrackMeta
    audio_format: AudioFormat
    separator: str = ", "
    id3v24: bool = True


class BaseTagger(ABC):
    """Abstract base class for container-specific taggers."""

    def __init__(self, ctx: TaggingContext) -> None:
        """Initializes the tagger with context.

        Args:
            ctx: Tagging context containing all necessary data.
        """
        self.ctx = ctx
        self.tagger = self._create_tagger()

    @abstractmethod
    def _create_tagger(self) -> SupportsTagging:
        """Creates the container-specific tagger instance."""
        ...

    @abstractmethod
    def _save(self) -> None:
        """Saves tags in container-specific format."""
        ...

    def _set_common_tags(self) -> None:
        """Sets tags shared across all containers."""
        meta = self.ctx.meta
        separator = self.ctx.separator

        self.tagger["title"] = meta.title
        self.tagger["artist"] = meta.author(separator)
        if meta.album:
            self.tagger["album"] = meta.album
        if meta.album_artists:
            self.tagger["albumartist"] = separator.join(meta.album_artists)
        if meta.track_number:
            self.tagger["tracknumber"] = str(meta.track_number)
        if meta.disc_number:
            self.tagger["discnumber"] = str(meta.disc_number)
        if meta.release_date:
            self.tagger["date"] = meta.release_date
        if meta.isrc:
            self.tagger["isrc"] = meta.isrc

    def tag(self) -> None:
        """Executes the full tagging process.

        Raises:
            TagSavingFailure: If the tags cannot be written.
        """
        self._set_common_tags()
        try:
            self._save()
        except (MutagenError, OSError, ValueError) as e:
            logger.debug(f"Tagging {self.ctx.file_path} failed: {e}")
            raise TagSavingFailure(self.ctx.file_path, str(e)) from e


class OggVorbisTagger(BaseTagger):
    """Tagger implementation for Ogg Vorbis files."""

    def _create_tagger(self) -> OggVorbis:
        return OggVorbis(self.ctx.file_path)

    def _save(self) -> None:
        self.tagger.save()


class MP3Tagger(BaseTagger):
    """Tagger implementation for MP3 files using EasyID3 keys."""

    def _create_tagger(self) -> EasyMP3:
        tagger = EasyMP3(self.ctx.file_path)
        if tagger.tags is None:
            tagger.tags = EasyID3()
        return tagger

    def _save(self) -> None:
        if self.ctx.id3v24:
            self.tagger.save(self.ctx.file_path, v2_version=4)
        else:
            self.tagger.save(self.ctx.file_path, v2_version=3, v23_sep=None)


def create_tagger(ctx: TaggingContext) -> BaseTagger:
    """Factory function to create the appropriate tagger for a container.

    Args:
        ctx: Tagging context containing file info and metadata.

    Returns:
        A container-specific tagger instance.
    """
    tagger_map: dict[AudioFormat, type[BaseTagger]] = {
        AudioFormat.OGG: OggVorbisTagger,
        AudioFormat.MP3: MP3Tagger,
    }
    return tagger_map[ctx.audio_format](ctx)


def tag_file(
    file_path: str,
    meta: TrackMeta,
    audio_format: AudioFormat,
    separator: str = ", ",
    id3v24: bool = True,
) -> None:
    """Tags an audio file with metadata.

    Args:
        file_path: Path to the audio file.
        meta: Track metadata.
        audio_format: Container of the file.
        separator: String used to join multiple artist names.
        id3v24: Write ID3 v2.4 instead of v2.3 (MP3 only).

    Raises:
        TagSavingFailure: If the file cannot be opened or saved.
    """
    ctx = TaggingContext(
        file_path=file_path,
        meta=meta,
        audio_format=audio_format,
        separator=separator,
        id3v24=id3v24,
    )
    try:
        tagger = create_tagger(ctx)
    except (MutagenError, OSError) as e:
        raise TagSavingFailure(file_path, str(e)) from e
    tagger.tag()
