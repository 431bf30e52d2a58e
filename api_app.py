"""FastAPI entrypoint for uvicorn.

Run: `uvicorn api_app:app --reload`
Serves the API under both `/` and `/functions/v1` so clients written against
the hosted function URLs work unchanged.
"""

from fastapi import FastAPI

from moral_story_maker.backend.app import app as core_app

app = FastAPI()
app.mount("/functions/v1", core_app)
app.mount("/", core_app)
