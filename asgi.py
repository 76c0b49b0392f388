"""
asgi.py -- Application assembly for the Benefits Portal.

This is the ONLY file that imports from both api/ and web/. It joins the two
independent layers into a single ASGI app without coupling them to each other.
api/main.py knows nothing about web/; web/routes.py knows nothing about api/.

Run with:  uvicorn asgi:app --reload
"""

from fastapi import Depends

from api.main import app
from auth.limiter import enforce_general_limit
from web.routes import router as web_router

# Mount the web router here, not in api/main.py.
# This keeps api/ and web/ independent -- neither imports from the other.
# The general rate-limit window covers the web pages the same way it covers
# the API routers.
app.include_router(web_router, tags=["Web UI"], dependencies=[Depends(enforce_general_limit)])
