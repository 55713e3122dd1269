import anyio
import pytest
import sse_starlette
from packaging import version

# sse-starlette 3 keeps its shutdown event per context instead of per module
SSE_STARLETTE_HAS_GLOBAL_STATUS = version.parse(sse_starlette.__version__) < version.parse("3.0.0")


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def fresh_sse_exit_event():
    """Give every test its own sse-starlette exit event.

    Older sse-starlette releases store ``AppStatus.should_exit_event`` on the
    class; once a stream in one test binds it to that test's loop, streams in
    later tests fail with "bound to a different event loop".
    """
    if not SSE_STARLETTE_HAS_GLOBAL_STATUS:
        yield
        return

    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]
    yield
    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]
