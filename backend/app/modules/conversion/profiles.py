"""Encoder profiles for supported output formats.

Each profile maps a requested format to the ffmpeg output options, the file
extension written to disk and the media type sent to the client. The format
name is only ever used as a key into this table.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FormatProfile:
    """Output encoding parameters for one format."""
    name: str
    extension: str
    media_type: str
    output_options: tuple[str, ...]
    lossless: bool = False


def _lossy(codec: str, bitrate: str, muxer: str) -> tuple[str, ...]:
    # Constant bitrate encode, video streams dropped
    return ("-vn", "-c:a", codec, "-b:a", bitrate, "-f", muxer)


def _lossless(codec: str, muxer: str) -> tuple[str, ...]:
    return ("-vn", "-c:a", codec, "-f", muxer)


FORMAT_PROFILES: dict[str, FormatProfile] = {
    "mp3": FormatProfile(
        name="mp3",
        extension="mp3",
        media_type="audio/mpeg",
        output_options=_lossy("libmp3lame", "192k", "mp3"),
    ),
    "aac": FormatProfile(
        name="aac",
        extension="aac",
        media_type="audio/aac",
        # Raw AAC needs the ADTS container
        output_options=_lossy("aac", "192k", "adts"),
    ),
    "m4a": FormatProfile(
        name="m4a",
        extension="m4a",
        media_type="audio/mp4",
        # M4A is an MP4 container; the codec must be explicit
        output_options=_lossy("aac", "192k", "mp4"),
    ),
    "ogg": FormatProfile(
        name="ogg",
        extension="ogg",
        media_type="audio/ogg",
        output_options=_lossy("libvorbis", "192k", "ogg"),
    ),
    "opus": FormatProfile(
        name="opus",
        extension="opus",
        media_type="audio/opus",
        output_options=_lossy("libopus", "128k", "opus"),
    ),
    "wma": FormatProfile(
        name="wma",
        extension="wma",
        media_type="audio/x-ms-wma",
        output_options=_lossy("wmav2", "192k", "asf"),
    ),
    "wav": FormatProfile(
        name="wav",
        extension="wav",
        media_type="audio/wav",
        output_options=_lossless("pcm_s16le", "wav"),
        lossless=True,
    ),
    "flac": FormatProfile(
        name="flac",
        extension="flac",
        media_type="audio/flac",
        output_options=_lossless("flac", "flac"),
        lossless=True,
    ),
    "aiff": FormatProfile(
        name="aiff",
        extension="aiff",
        media_type="audio/aiff",
        # AIFF is big-endian PCM
        output_options=_lossless("pcm_s16be", "aiff"),
        lossless=True,
    ),
    "alac": FormatProfile(
        name="alac",
        extension="m4a",
        media_type="audio/mp4",
        output_options=_lossless("alac", "ipod"),
        lossless=True,
    ),
}


def get_format_profile(name: str) -> FormatProfile:
    """Get the encoder profile for an already validated format.

    Raises:
        KeyError: If the format has no profile
    """
    return FORMAT_PROFILES[name]
