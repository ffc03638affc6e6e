from fastapi import Request

from busstation.src import exceptions, schemas
from busstation.src.constants import HEADER_ACTOR_ID


def requestInfo(request: Request) -> schemas.RequestInfo:
    """
    Extract metadata about the incoming request.

    Used by every mutating endpoint; each recorded phase names the staff
    member who performed it.

    Args:
        request (Request): FastAPI request object.

    Returns:
        schemas.RequestInfo: Pydantic model containing:
            - method (str): HTTP method (GET, POST, etc.).
            - path (str): Path portion of the request URL.
            - actor_id (str): Staff id forwarded by the auth gateway
              in the `X-Actor-ID` header.

    Raises:
        exceptions.MissingActor: If the header is absent or blank.
    """
    actor_id = request.headers.get(HEADER_ACTOR_ID, "").strip()
    if not actor_id:
        raise exceptions.MissingActor()
    return schemas.RequestInfo(
        method=request.method,
        path=request.url.path,
        actor_id=actor_id,
    )
