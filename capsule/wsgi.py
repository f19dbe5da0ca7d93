"""
Serve the /api/v1 ledger API.

  CAPSULE_WATCHER=0 gunicorn -w 4 -b 0.0.0.0:8000 capsule.wsgi:app
  python -m capsule.wsgi --port 8000     # development server

With more than one worker, keep the clock in `python -m capsule.watcher`.
"""

import argparse
import os

from dotenv import load_dotenv

from . import create_app

load_dotenv()

app = create_app()


def main(argv=None):
    ap = argparse.ArgumentParser(description="Run the capsule API (development)")
    ap.add_argument("--host", default=os.environ.get("HOST", "127.0.0.1"))
    ap.add_argument("--port", type=int, default=int(os.environ.get("PORT", "8000")))
    ap.add_argument("--debug", action="store_true")
    args = ap.parse_args(argv)
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
