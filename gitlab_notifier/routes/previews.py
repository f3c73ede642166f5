"""Hosted link-preview pages."""

from html import escape

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.database import get_db
from gitlab_notifier.services.previews import get_preview

router = APIRouter(tags=["previews"])

_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta property="og:site_name" content="{title}">
<meta property="og:title" content="{headline}">
<meta property="og:description" content="{description}">
<meta http-equiv="refresh" content="0; url={url}">
<title>{headline}</title>
</head>
<body><a href="{url}">{headline}</a></body>
</html>
"""


@router.get("/wp/{token}", response_class=HTMLResponse)
async def web_preview_page(token: str, db: AsyncSession = Depends(get_db)) -> HTMLResponse:
    """Page whose OpenGraph tags feed the chat link preview; browsers are redirected on."""
    preview = await get_preview(db, token)
    if preview is None:
        raise HTTPException(status_code=404, detail="Preview not found")
    return HTMLResponse(_PAGE.format(
        title=escape(preview.title),
        headline=escape(preview.headline),
        description=escape(preview.description),
        url=escape(preview.url),
    ))
