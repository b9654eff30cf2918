from fastapi import Depends, HTTPException, Request
from typing import Annotated

from safetravel.core.pipeline import SafetyPipeline
from safetravel.exceptions import SafeTravelError

def get_pipeline(request: Request) -> SafetyPipeline:
    return request.app.state.pipeline

PipelineDep = Annotated[SafetyPipeline, Depends(get_pipeline)]

def http_error(status_code: int, error: SafeTravelError) -> HTTPException:
    return HTTPException(status_code=status_code, detail=error.to_dict())
