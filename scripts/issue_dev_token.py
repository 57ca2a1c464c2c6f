# scripts/issue_dev_token.py
"""
AUTH_PROVIDER=jwt 時，簽一張本機開發用的 Bearer token。

    python -m scripts.issue_dev_token some-uid someone@example.com
"""
import sys

from app.core.config import get_settings
from app.core.security import JwtTokenVerifier


def main(argv) -> int:
    if not 1 <= len(argv) <= 2:
        print("usage: python -m scripts.issue_dev_token UID [EMAIL]", file=sys.stderr)
        return 2
    s = get_settings()
    verifier = JwtTokenVerifier(s.JWT_SECRET_KEY, s.JWT_ALGORITHM, s.JWT_AUDIENCE, s.JWT_ISSUER)
    email = argv[1] if len(argv) > 1 else None
    print(verifier.issue(argv[0], email=email, expires_minutes=60 * 24))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
