"""Routes for the static front-end.

The HTML pages themselves are produced by the site generator and only
served from here.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, FastAPI
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles

logger = logging.getLogger(__name__)

router = APIRouter(tags=["site"])

# Old menu entries that now live on the home page
LEGACY_PATHS = ("/audio-formats", "/privacy", "/faq")


async def redirect_home() -> RedirectResponse:
    """Redirect a retired page to the home page."""
    return RedirectResponse(url="/", status_code=302)


for _path in LEGACY_PATHS:
    router.add_api_route(_path, redirect_home, methods=["GET"], include_in_schema=False)


def mount_static(app: FastAPI, directory: Optional[Path]) -> bool:
    """Serve the generated site at "/" if the directory exists.

    Must be called after all API routes are registered, since the mount
    matches every path.

    Returns:
        True if the directory was mounted
    """
    if directory is None:
        return False
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning("Static directory not found, skipping", extra={"directory": str(directory)})
        return False
    app.mount("/", StaticFiles(directory=directory, html=True), name="static")
    return True
