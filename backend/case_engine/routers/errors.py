"""
Maps engine errors onto HTTP responses.

NotFoundError -> 404, transition/metadata violations -> 422,
persistence failures -> 500. The body is FastAPI's {"detail": ...}.
"""
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException

from ..errors import (
    InvalidMetadataError,
    InvalidTransitionError,
    NotFoundError,
    OrchestrationError,
)


@contextmanager
def http_errors() -> Iterator[None]:
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidTransitionError, InvalidMetadataError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except OrchestrationError as e:
        raise HTTPException(status_code=500, detail=str(e))
