"""Run the API server with Uvicorn on the configured port."""

import uvicorn

from .main import app, config


def main() -> None:
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
