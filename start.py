"""Runpad - Start Script

Starts uvicorn on RUNPAD_HOST / RUNPAD_PORT.
"""

import uvicorn

from runpad.config import settings


def main():
    print(f"Starting Runpad on {settings.HOST}:{settings.PORT}")
    print(f"  STORE_DIR: {settings.STORE_DIR}")
    print(f"  API_KEY: {'***configured***' if settings.API_KEY else 'NOT SET (dev mode)'}")

    # One worker: the session (active runs, output subscribers) lives in-process
    uvicorn.run(
        "runpad.main:app",
        host=settings.HOST,
        port=settings.PORT,
        workers=1,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
