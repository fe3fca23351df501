"""
Middleware - Runs multipart ingestion ahead of the route handler.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from .orchestrator import Multair

logger = logging.getLogger("multair.middleware")

Handler = Callable[[Any, Any], Awaitable[Any]]


class MultairMiddleware:
    """
    Parses multipart bodies before the handler runs.
    
    On success the handler finds:
    - ``request.state["form"]``: the FormResult
    - ``request.state["body"]``: the plain fields
    - ``request.state["files"]``: stored files per field name
    
    Non-multipart requests go straight to the handler. Faults propagate.
    """
    
    def __init__(self, multair: Optional[Multair] = None, **options: Any):
        self.multair = multair if multair is not None else Multair(**options)
    
    async def __call__(self, request: Any, ctx: Any, next: Handler) -> Any:
        form = await self.multair.process(request)
        if form is not None:
            request.state["form"] = form
            request.state["body"] = form.fields
            request.state["files"] = form.files
            logger.debug(
                "Form ready for %s %s: %d fields, %d file fields",
                request.method, request.path, len(form.fields), len(form.files),
            )
        return await next(request, ctx)
