"""MIME type and file extension mappings for uploaded audio."""

ALLOWED_AUDIO_MIME_TYPES: tuple[str, ...] = (
    "audio/webm",
    "audio/mp3",
    "audio/mpeg",
    "audio/wav",
    "audio/mp4",
    "audio/ogg",
)

_MIME_TO_EXTENSION: dict[str, str] = {
    "audio/webm": "webm",
    "audio/mp3": "mp3",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/mp4": "mp4",
    "audio/ogg": "ogg",
}

_EXTENSION_TO_MIME: dict[str, str] = {
    "webm": "audio/webm",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "mp4": "audio/mp4",
    "ogg": "audio/ogg",
    "mpeg": "audio/mpeg",
}


def base_mime_type(content_type: str | None) -> str:
    """Strip parameters such as '; codecs=opus' from a content type."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def extension_for_mime(content_type: str | None) -> str:
    """Return the file extension for a MIME type, defaulting to webm."""
    return _MIME_TO_EXTENSION.get(base_mime_type(content_type), "webm")


def mime_for_extension(extension: str) -> str:
    """Return the MIME type for a file extension, defaulting to audio/webm."""
    return _EXTENSION_TO_MIME.get(extension.lower().lstrip("."), "audio/webm")


def extension_from_path(path: str) -> str:
    """Return the extension of a storage path, defaulting to webm."""
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return "webm"
    return name.rsplit(".", 1)[-1].lower() or "webm"
