"""Conversion and tagging step of the pipeline.

AudioConverter turns a spooled Ogg Vorbis stream into the configured
output format, tags it, and only then moves it onto the final path with an
atomic replace. A failed conversion never leaves a file at the target, so
the already-downloaded check cannot be fooled by a half-written output.
"""

import logging
import os
import shutil
from pathlib import Path

from av.error import FFmpegError

from .clients.base import Converter
from .tagging import tag_file
from .utils.exceptions import ConversionError
from .utils.models import AudioFormat, Quality, TrackMeta
from .utils.transcoder import transcode

logger = logging.getLogger(__name__)

SOURCE_FORMAT = "ogg"


class AudioConverter(Converter):
    """Converter backed by PyAV and mutagen."""

    def __init__(
        self,
        audio_format: AudioFormat,
        quality: Quality = Quality.VERY_HIGH,
        id3v24: bool = True,
        separator: str = ", ",
    ) -> None:
        """Initialize the converter.

        Args:
            audio_format: Output format. OGG keeps the stream as is.
            quality: Quality tier, used as the MP3 bit rate.
            id3v24: Write ID3 v2.4 instead of v2.3 for MP3 output.
            separator: String used to join multiple artist names.
        """
        self._format = audio_format
        self._bit_rate = quality.value * 1000
        self._id3v24 = id3v24
        self._separator = separator

    def process(self, source: Path, meta: TrackMeta, target: Path) -> Path:
        """Converts, tags and moves a track into place.

        Args:
            source: Spooled Ogg Vorbis stream.
            meta: Track metadata.
            target: Final output path.

        Returns:
            The final output path.

        Raises:
            ConversionError: If transcoding or the final move fails.
            TagSavingFailure: If tags cannot be written.
        """
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(f"{target.name}.part")

        try:
            self._convert(source, partial)
            tag_file(
                str(partial),
                meta,
                self._format,
                separator=self._separator,
                id3v24=self._id3v24,
            )
            try:
                os.replace(partial, target)
            except OSError as e:
                raise ConversionError(
                    SOURCE_FORMAT, self._format.value, f"Cannot move into place: {e}"
                ) from e
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        logger.debug(f"Wrote {target}")
        return target

    def _convert(self, source: Path, destination: Path) -> None:
        """Writes the converted (or copied) audio to ``destination``.

        Raises:
            ConversionError: If the audio cannot be decoded or encoded.
        """
        try:
            if self._format is AudioFormat.OGG:
                shutil.copyfile(source, destination)
            else:
                transcode(source, destination, self._format, bit_rate=self._bit_rate)
        except (FFmpegError, OSError, ValueError, TypeError) as e:
            raise ConversionError(SOURCE_FORMAT, self._format.value, str(e)) from e
