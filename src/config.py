"""Configuration management for the SEDA oracle price puller."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Data directory
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# Session history (one JSON report per line)
SESSIONS_LOG_PATH = DATA_DIR / "sessions.jsonl"

# SEDA credentials / program
ORACLE_PROGRAM_ID = os.getenv(
    "ORACLE_PROGRAM_ID",
    "71b5d524d45c4bb170e82a91269e501dd1e8c2289a9930f1d67bfdd0d2786010",
)
SEDA_MNEMONIC = os.getenv("SEDA_MNEMONIC", "")

# Pull mode: "paper" (simulated network) or "live"
PULL_MODE = os.getenv("PULL_MODE", "paper")

# =============================================================================
# NETWORK ENDPOINTS
# =============================================================================

SEDA_NETWORK = os.getenv("SEDA_NETWORK", "testnet")
SEDA_RPC_URL = os.getenv("SEDA_RPC_URL", "https://rpc.testnet.seda.xyz")
SEDA_REST_URL = os.getenv("SEDA_REST_URL", "https://lcd.testnet.seda.xyz")
SEDA_EXPLORER_URL = os.getenv("SEDA_EXPLORER_URL", "https://testnet.explorer.seda.xyz")

# =============================================================================
# GAS / CHUNKING
# =============================================================================

# Gas units consumed by the oracle program per requested asset
GAS_PER_ASSET = int(os.getenv("GAS_PER_ASSET", "80000000"))

# Gas ceiling for a single data request
MAX_GAS_PER_REQUEST = int(os.getenv("MAX_GAS_PER_REQUEST", "300000000"))

# Execution gas price (aseda per gas unit)
GAS_PRICE = int(os.getenv("GAS_PRICE", "10000"))

# Fixed chunk size override (unset = derive from gas budget)
_max_assets = os.getenv("MAX_ASSETS_PER_REQUEST", "")
MAX_ASSETS_PER_REQUEST = int(_max_assets) if _max_assets else None

# =============================================================================
# SUBMISSION
# =============================================================================

MAX_SUBMIT_RETRIES = int(os.getenv("MAX_SUBMIT_RETRIES", "3"))

# First backoff delay in seconds (doubles each attempt)
SUBMIT_BACKOFF_BASE = float(os.getenv("SUBMIT_BACKOFF_BASE", "2.0"))

# Pause between consecutive submissions from the same signer
INTER_SUBMIT_DELAY = float(os.getenv("INTER_SUBMIT_DELAY", "1.0"))

# =============================================================================
# RESOLUTION
# =============================================================================

POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "2.0"))
MAX_POLL_ATTEMPTS = int(os.getenv("MAX_POLL_ATTEMPTS", "30"))

# Budget for the heavier "fetch decoded result" call
RESULT_TIMEOUT = float(os.getenv("RESULT_TIMEOUT", "30.0"))
RESULT_POLL_INTERVAL = float(os.getenv("RESULT_POLL_INTERVAL", "2.0"))

# Whole-session deadline in seconds (empty = wait for every request)
_session_deadline = os.getenv("SESSION_DEADLINE", "120.0")
SESSION_DEADLINE = float(_session_deadline) if _session_deadline else None
