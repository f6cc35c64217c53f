"""
MPM Web Interface
FastAPI application exposing the package manager command surface
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
import logging

from mpm_core import MpmConfig, MpmError, PackageManager, execute
from mpm_engine import __version__ as ENGINE_VERSION

logger = logging.getLogger(__name__)

app = FastAPI(title="MPM", version=ENGINE_VERSION)

# Injected manager (tests); None = build one from MPM_* env vars per request
_manager = None


def _set_manager(manager):
    """Use a fixed PackageManager for every request (for testing)."""
    global _manager
    _manager = manager


def _reset_manager():
    global _manager
    _manager = None


def get_manager():
    if _manager is not None:
        return _manager
    return PackageManager(MpmConfig.from_env())


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class CommandRequest(BaseModel):
    command: str
    args: list[str] = []

class CommandResult(BaseModel):
    command: str
    output: str

class ErrorResponse(BaseModel):
    error: str
    kind: str


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(MpmError)
async def mpm_error_handler(request: Request, exc: MpmError):
    """Render an MpmError with the status code of its kind."""
    logger.info("%s %s -> %d %s", request.method, request.url.path,
                exc.status_code, exc.kind.value)
    if request.url.path.startswith('/api/'):
        body = ErrorResponse(error=exc.message, kind=exc.kind.value)
        return JSONResponse(body.model_dump(), status_code=exc.status_code)
    return PlainTextResponse(exc.message, status_code=exc.status_code)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.post('/api/run', response_model=CommandResult,
          responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse},
                     503: {"model": ErrorResponse}})
def api_run(body: CommandRequest):
    """Run one command; JSON in, JSON out."""
    output = execute(get_manager(), body.command, body.args)
    return CommandResult(command=body.command, output=output)


@app.api_route('/{command}', methods=['GET', 'POST'], response_class=PlainTextResponse)
@app.api_route('/{command}/{args:path}', methods=['GET', 'POST'],
               response_class=PlainTextResponse)
def run_command(command: str, args: str = ''):
    """Run a command addressed as /COMMAND/ARG0/ARG1/... and return plain text."""
    arg_list = [a for a in args.split('/') if a]
    return PlainTextResponse(execute(get_manager(), command, arg_list))
