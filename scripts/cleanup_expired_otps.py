"""
Delete OTP rows whose expiry has passed.

Usage:
  python scripts/cleanup_expired_otps.py [--dry-run]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func  # noqa: E402

from app.feebook.models import OtpCode  # noqa: E402
from app.feebook.otp import cleanup_expired_otps  # noqa: E402
from app.feebook.utils import utcnow  # noqa: E402
from scripts._db_utils import database_url, script_session  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--dry-run", action="store_true", help="Count expired rows without deleting them")
    args = parser.parse_args(argv)

    with script_session(database_url(args.database_url)) as s:
        if args.dry_run:
            n = s.query(func.count(OtpCode.id)).filter(OtpCode.expires_at < utcnow()).scalar() or 0
            print(f"{n} expired OTP(s) would be deleted", flush=True)
            return 0
        n = cleanup_expired_otps(s)
    print(f"Deleted {n} expired OTP(s)", flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
