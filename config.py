# app/config.py
from dotenv import load_dotenv
from pathlib import Path
import os

load_dotenv()

# ------------------------------------------------------------
# Deployment artifact (written by scripts/deploy.js)
# ------------------------------------------------------------
DEPLOYMENT_PATH = Path(os.getenv("DEPLOYMENT_PATH", "contract-address.txt"))
ARTIFACTS_DIR = Path(os.getenv("ARTIFACTS_DIR", "artifacts/contracts"))


def load_deployed_address():
    if not DEPLOYMENT_PATH.exists():
        print(f"⚠️ deployment artifact missing: {DEPLOYMENT_PATH}")
        return ""

    try:
        return DEPLOYMENT_PATH.read_text().strip()
    except OSError as e:
        print("⚠️ failed to read deployment artifact:", e)
        return ""


DEPLOYED_ADDRESS = load_deployed_address()

# ------------------------------------------------------------
# Chain / contracts
# ------------------------------------------------------------
CHAIN_ID = int(os.getenv("CHAIN_ID", "11155111"))  # Sepolia

RPC_URL = os.getenv(
    "RPC_URL",
    "https://ethereum-sepolia-rpc.publicnode.com"
)

TWITTER_VERIFICATION_ADDRESS = (
    os.getenv("TWITTER_VERIFICATION_ADDRESS")
    or DEPLOYED_ADDRESS
    or "0x5Afe91b48A76C2633e90Ce95d10DCc30269B7585"
)

# UMA Optimistic Oracle V3 on Sepolia
OPTIMISTIC_ORACLE_ADDRESS = os.getenv(
    "OPTIMISTIC_ORACLE_ADDRESS",
    "0xFd9e2642a170aDD10F53Ee14a93FcF2F31924944"
)

SIGNER_ADDRESS = os.getenv("SIGNER_ADDRESS", "")
SIGNER_PRIVATE_KEY = os.getenv("SIGNER_PRIVATE_KEY", "")

# "web3": the deployed TwitterVerification contract is the registry.
# "local": the registry runs in-process on top of DATABASE_URL.
REGISTRY_BACKEND = os.getenv("REGISTRY_BACKEND", "web3").lower().strip()

RECEIPT_TIMEOUT = int(os.getenv("RECEIPT_TIMEOUT", "120"))  # seconds
SUBMIT_GAS_LIMIT = int(os.getenv("SUBMIT_GAS_LIMIT", "1000000"))
SETTLE_GAS_LIMIT = int(os.getenv("SETTLE_GAS_LIMIT", "500000"))

# ------------------------------------------------------------
# DB / indexer
# ------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tweet_claims.db")

INDEXER_ENABLED = os.getenv("INDEXER_ENABLED", "false").lower() in ("1", "true", "yes")
INDEXER_POLL_INTERVAL = int(os.getenv("INDEXER_POLL_INTERVAL", "12"))
INDEXER_BLOCK_WINDOW = int(os.getenv("INDEXER_BLOCK_WINDOW", "2000"))
INDEXER_START_BLOCK = int(os.getenv("INDEXER_START_BLOCK", "0"))

print("Config loaded:")
print("  CHAIN_ID:", CHAIN_ID)
print("  REGISTRY_BACKEND:", REGISTRY_BACKEND)
print("  TWITTER_VERIFICATION:", TWITTER_VERIFICATION_ADDRESS)
print("  SIGNER_ADDRESS:", SIGNER_ADDRESS or "<missing>")
print("  RPC_URL:", RPC_URL[:48] + "…")
