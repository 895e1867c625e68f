"""Authorize the digest sender's Gmail account and store the token in .env.

Usage:
    python scripts/gmail_auth.py            # opens a browser on this machine
    python scripts/gmail_auth.py --manual   # headless: paste the redirect URL back

Requires GMAIL_CREDENTIALS_JSON (the OAuth client secrets JSON) in the
environment or .env. The resulting send-only token is written to .env as
GMAIL_TOKEN_JSON, which the Gmail notifier reads at start-up.
"""

import argparse
import json
import sys
from pathlib import Path
from urllib.parse import parse_qs, urlparse

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import set_key
from google_auth_oauthlib.flow import InstalledAppFlow

from config import settings
from journal_digest.exceptions import ConfigurationError
from journal_digest.notifier import SEND_SCOPES, GmailNotifier

TOKEN_ENV_KEY = "GMAIL_TOKEN_JSON"
ENV_PATH = Path(__file__).resolve().parent.parent / ".env"


def _manual_flow(flow: InstalledAppFlow) -> None:
    flow.redirect_uri = "http://localhost"
    auth_url, _ = flow.authorization_url(access_type="offline", prompt="consent")
    print(f"\nOpen this URL, sign in and grant send access:\n\n{auth_url}\n")
    print("Your browser will land on an http://localhost?code=... page that does not load.")
    redirect_url = input("Paste that full URL here: ").strip()

    code = parse_qs(urlparse(redirect_url).query).get("code")
    if not code:
        print("ERROR: No authorization code found in the URL.")
        sys.exit(1)
    flow.fetch_token(code=code[0])


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create the Gmail send token for digest mail.")
    parser.add_argument("--manual", action="store_true", help="copy/paste flow for machines without a browser")
    args = parser.parse_args(argv)

    if not settings.gmail_credentials_json:
        print("ERROR: GMAIL_CREDENTIALS_JSON is not set (OAuth client secrets JSON).")
        sys.exit(1)

    flow = InstalledAppFlow.from_client_config(json.loads(settings.gmail_credentials_json), SEND_SCOPES)
    if args.manual:
        _manual_flow(flow)
    else:
        flow.run_local_server(port=0, access_type="offline", prompt="consent")

    token_json = flow.credentials.to_json()
    try:
        GmailNotifier(token_json)
    except ConfigurationError as e:
        print(f"ERROR: Authorization returned an unusable token: {e}")
        sys.exit(1)

    ENV_PATH.touch(exist_ok=True)
    set_key(str(ENV_PATH), TOKEN_ENV_KEY, token_json, quote_mode="never")
    print(f"{TOKEN_ENV_KEY} written to {ENV_PATH}. Digest mail can be sent.")


if __name__ == "__main__":
    main()
