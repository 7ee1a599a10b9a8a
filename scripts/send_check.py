# Post a diagnostics file to a running /check endpoint.
#   python scripts/send_check.py diagnostics.json
# The file holds a full check request: installation_id, owner, repo, sha,
# pr_number (optional) and diagnostics.
import os, sys, json, requests
from dotenv import load_dotenv

load_dotenv()
url = os.getenv("PRSEC_CHECK_URL", "http://127.0.0.1:8000/check")
if len(sys.argv) != 2:
    sys.exit("usage: send_check.py REQUEST.json")
with open(sys.argv[1], "r", encoding="utf-8") as f:
    payload = json.load(f)

r = requests.post(url, json=payload, timeout=int(os.getenv("HTTP_TIMEOUT_S", "120")))
print(r.status_code, r.text)
sys.exit(0 if r.ok and r.json().get("conclusion") != "failure" else 1)
