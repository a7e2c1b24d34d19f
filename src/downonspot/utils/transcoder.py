"""Audio transcoding utilities using PyAV.

This module provides the format conversion used by the converter step,
decoding the Ogg Vorbis stream and encoding it into the output codec.
"""

from pathlib import Path

import av

from .models import AudioFormat

_PYAV_ENCODER_MAP: dict[AudioFormat, str] = {
    AudioFormat.MP3: "libmp3lame",
    AudioFormat.OGG: "libvorbis",
}

_PYAV_CONTAINER_MAP: dict[AudioFormat, str] = {
    AudioFormat.MP3: "mp3",
    AudioFormat.OGG: "ogg",
}


def transcode(
    input_path: str | Path,
    output_path: str | Path,
    target_format: AudioFormat,
    bit_rate: int | None = None,
) -> None:
    """Transcodes an audio file using PyAV.

    The output container is chosen from ``target_format`` rather than the
    output file extension, so temporary names are safe to use.

    Args:
        input_path: Path to the input audio file.
        output_path: Path for the output audio file.
        target_format: Output format.
        bit_rate: Target bit rate in bit/s, or None for the encoder default.

    Raises:
        ValueError: If the input has no audio stream.
        TypeError: If output stream is not an AudioStream.
    """
    encoder_name = _PYAV_ENCODER_MAP[target_format]

    with av.open(str(input_path)) as input_container:
        if not input_container.streams.audio:
            raise ValueError(f"No audio stream found in {input_path}")

        with av.open(
            str(output_path), mode="w", format=_PYAV_CONTAINER_MAP[target_format]
        ) as output_container:
            input_stream = input_container.streams.audio[0]
            output_stream = output_container.add_stream(encoder_name)

            if not isinstance(output_stream, av.AudioStream):
                raise TypeError(
                    f"Expected AudioStream, got {type(output_stream).__name__}"
                )

            output_stream.rate = input_stream.rate
            output_stream.layout = input_stream.layout
            if bit_rate:
                output_stream.bit_rate = bit_rate

            # Transcode frames
            for frame in input_container.decode(audio=0):
                for packet in output_stream.encode(frame):
                    output_container.mux(packet)

            # Flush encoder
            for packet in output_stream.encode():
                output_container.mux(packet)
