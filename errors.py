# errors.py
# Error taxonomy shared by the stage handlers, the stage server and the driver.


class PipelineError(Exception):
    code = 'internal_error'
    status = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"error": self.code, "message": self.message}


class BadRequestError(PipelineError):
    """Missing or malformed request parameter (including object references)."""
    code = 'bad_request'
    status = 400


class StoreFetchError(PipelineError):
    """Object absent or unreadable."""
    code = 'store_fetch_error'
    status = 502


class StoreWriteError(PipelineError):
    """Object could not be persisted."""
    code = 'store_write_error'
    status = 502


class TableParseError(PipelineError):
    """Fetched bytes are not a valid word -> count table."""
    code = 'parse_error'
    status = 422


class StageInvocationError(Exception):
    """Raised by the driver when a stage call fails over HTTP."""

    def __init__(self, stage, message, status=None):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message
        self.status = status
