"""FastAPI dependencies for the comment API.

Provides dependency injection for:
- Comment service
- Error translation to HTTP responses
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import CommentError, CommentService


async def get_comment_service(request: Request) -> CommentService:
    """Get comment service from app state.

    Raises:
        HTTPException: 503 when storage was not initialized.
    """
    app_state = request.app.state
    if not hasattr(app_state, "comment_service") or not app_state.comment_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Comment service unavailable",
        )
    return app_state.comment_service


CommentServiceDep = Annotated[CommentService, Depends(get_comment_service)]


def handle_comment_error(error: CommentError) -> HTTPException:
    """Convert comment errors to HTTP exceptions."""
    status_map = {
        "validation_error": status.HTTP_400_BAD_REQUEST,
        "comment_not_found": status.HTTP_404_NOT_FOUND,
        "parent_not_found": status.HTTP_404_NOT_FOUND,
        "post_not_found": status.HTTP_404_NOT_FOUND,
        "permission_denied": status.HTTP_403_FORBIDDEN,
        "version_conflict": status.HTTP_409_CONFLICT,
        "duplicate_report": status.HTTP_409_CONFLICT,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
