# Mint an installation token with the service's own credential + provider.
#   INSTALLATION_ID=123 python scripts/mint_installation_token.py
import os, json

import requests

from config import ca_bundle, load_settings
from github_app import AppCredential, InstallationTokenProvider

settings = load_settings()
installation_id = int(os.environ["INSTALLATION_ID"])

session = requests.Session()
session.verify = ca_bundle()
provider = InstallationTokenProvider(
    AppCredential(settings.app_id, settings.private_key),
    api_base=settings.github_api,
    timeout_s=settings.http_timeout_s,
    session=session,
)
tok = provider.get_token(installation_id)
print(json.dumps({"token": tok.token, "expires_at": int(tok.expires_at), "installation_id": installation_id}, indent=2))
