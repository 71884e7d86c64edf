"""Audio Converter Backend Application.

Upload-and-convert HTTP service that hands media files to an external
transcoder (ffmpeg) and streams the converted result back.

Modules:
    - core: Configuration, logging, middleware, metrics
    - modules.conversion: Upload, validation, admission control, transcoding, streaming, cleanup
    - modules.site: Static front-end and legacy redirects
"""

__version__ = "1.0.0"
