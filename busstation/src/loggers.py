from logging import getLogger
from requests import RequestException

from busstation.src import openobserve
from busstation.src.schemas import RequestInfo


def logEvent(requestInfo: RequestInfo, data: dict) -> None:
    """
    Log an event to OpenObserve with request and actor context.

    Args:
        requestInfo (RequestInfo): Metadata about the current request.
        data (dict): Additional event-specific details to include in the log.

    Notes:
        - Automatically attaches `_method`, `_path` and `_actor_id`.
        - The log sink is an audit trail, not part of the operation. A failed
          delivery is reported as a warning and the request carries on.
    """
    logDetails = {
        "_method": requestInfo.method,
        "_path": requestInfo.path,
        "_actor_id": requestInfo.actor_id,
    }
    logDetails.update(data)

    try:
        openobserve.logEvent(logDetails)
    except RequestException as e:
        getLogger("uvicorn.error").warning("OpenObserve delivery failed: %s", e)
