# Run from project root: uvicorn lms_agent.main:app --reload

import logging

from fastapi import FastAPI

from lms_agent.api.handlers import register_exception_handlers
from lms_agent.api.routes import router
from lms_agent.core.config import LOG_LEVEL
from lms_agent.mcp.server import mcp_router

logging.basicConfig(level=LOG_LEVEL)


app = FastAPI(title="Course Agent Backend")
register_exception_handlers(app)
app.include_router(router)
app.include_router(mcp_router, prefix="/mcp")
