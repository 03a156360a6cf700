# faceauth/purge_expired.py
# One-off maintenance: drop expired authorization codes and tokens from MongoDB.
# MongoDB also expires them through TTL indexes. The JSON file belongs to the
# running server, which sweeps it in-process at startup.
import argparse

from . import config
from .main import build_store


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Delete expired authorization codes and tokens")
    parser.parse_args(argv)

    if config.STORAGE_BACKEND == "json":
        print("STORAGE_BACKEND=json: expired rows are swept by the running server, nothing to do")
        return 2

    store = build_store()
    try:
        removed = store.purge_expired()
    finally:
        store.close()
    print(f"Purged {removed} expired codes and tokens")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
