"""API Router for media conversion."""

from fastapi import APIRouter, Depends, Request
from starlette.responses import Response

from app.core.config import Settings
from app.modules.conversion.profiles import get_format_profile
from app.modules.conversion.schemas import ErrorResponse, FormatInfo, FormatsResponse
from app.modules.conversion.service import ConversionService

router = APIRouter(tags=["conversion"])


def get_conversion_service(request: Request) -> ConversionService:
    """Dependency to get the ConversionService wired in create_app()."""
    return request.app.state.conversion_service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.post(
    "/convert",
    response_class=Response,
    responses={
        200: {
            "description": "Converted file as an attachment",
            "content": {"application/octet-stream": {}},
        },
        400: {"model": ErrorResponse, "description": "Missing file, invalid format or file type, no audio track"},
        408: {"model": ErrorResponse, "description": "Conversion exceeded the timeout"},
        413: {"model": ErrorResponse, "description": "Upload exceeds the size limit"},
        429: {"model": ErrorResponse, "description": "Too many conversions in progress"},
        500: {"model": ErrorResponse, "description": "Transcoder could not run or failed"},
    },
)
async def convert(
    request: Request,
    service: ConversionService = Depends(get_conversion_service),
) -> Response:
    """Convert an uploaded audio or video file.

    Multipart fields: the file (``audioFile``) and ``format`` (defaults to mp3).
    The download is named ``converted-<job id>.<extension>``, where the
    extension is the one listed by GET /formats (alac is delivered as .m4a).
    The body is parsed by the service so oversized uploads can be refused
    from the Content-Length header before they are read.
    """
    return await service.convert(request)


@router.get("/formats", response_model=FormatsResponse)
async def list_formats(settings: Settings = Depends(get_settings)) -> FormatsResponse:
    """List the accepted output formats and upload constraints."""
    formats = []
    for name in settings.ALLOWED_OUTPUT_FORMATS:
        profile = get_format_profile(name)
        formats.append(FormatInfo(
            name=profile.name,
            extension=profile.extension,
            media_type=profile.media_type,
            lossless=profile.lossless,
        ))
    return FormatsResponse(
        output_formats=formats,
        default_format=settings.DEFAULT_OUTPUT_FORMAT,
        input_extensions=settings.ALLOWED_INPUT_EXTENSIONS,
        max_upload_size_mb=settings.MAX_UPLOAD_SIZE_MB,
    )
