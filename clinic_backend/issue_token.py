"""Print a bearer token for a patient or doctor, for local development.

Usage:
    python -m clinic_backend.issue_token patient 12
    python -m clinic_backend.issue_token doctor 7 --minutes 240
"""
import argparse
import sys

from clinic_backend.auth.jwt_handler import ROLES, create_access_token
from clinic_backend.core import config


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('role', choices=ROLES)
    parser.add_argument('user_id', type=int)
    parser.add_argument('--minutes', type=int, default=None, help='token lifetime in minutes')
    args = parser.parse_args(argv)

    if config.APP_ENV.lower() == 'production':
        print('Refusing to issue development tokens in production.', file=sys.stderr)
        sys.exit(1)

    print(create_access_token(args.role, args.user_id, expires_minutes=args.minutes))


if __name__ == '__main__':
    main()
