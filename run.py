"""Serve the dev backend on the host and port the client is configured for."""

from urllib.parse import urlsplit

import uvicorn

from workspace.config import load_config

if __name__ == "__main__":
    target = urlsplit(load_config().api_url)
    uvicorn.run("workspace.dev_server:app", host=target.hostname or "localhost", port=target.port or 5000)
