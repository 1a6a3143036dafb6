"""Run FastAPI server."""
import uvicorn

from kinship.api.main import app
from kinship.config import configure_logging

if __name__ == "__main__":
    configure_logging()
    print("Starting FastAPI on http://localhost:8000")
    uvicorn.run(app, host="0.0.0.0", port=8000)
