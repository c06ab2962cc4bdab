"""
Application constants.

Centralized constants for the listener.
"""

# ========================================================================
# PAYMENT METHOD CONSTANTS
# ========================================================================

# Payment type suffix used to build payment method ids (XMR-CHAIN)
CHAIN_PAYMENT_TYPE = "CHAIN"

# Atomic units per coin (1 XMR = 10^12 piconero)
ATOMIC_UNITS_PER_COIN = 10**12
COIN_DECIMALS = 12

# ========================================================================
# CONFIRMATION POLICY
# ========================================================================

# Confirmations required per invoice speed policy
SPEED_POLICY_CONFIRMATIONS = {
    "HighSpeed": 0,
    "MediumSpeed": 1,
    "LowMediumSpeed": 2,
    "LowSpeed": 6,
}
DEFAULT_REQUIRED_CONFIRMATIONS = 6

# ========================================================================
# RPC CONSTANTS
# ========================================================================

WALLET_RPC_TIMEOUT = 30.0  # Per JSON-RPC call, seconds
DAEMON_POLL_INTERVAL = 10  # Daemon/wallet availability poll, seconds
JSON_RPC_PATH = "/json_rpc"

# ========================================================================
# LOCKING
# ========================================================================

INVOICE_LOCK_TIMEOUT = 60  # Redis lock expiry, seconds
INVOICE_LOCK_BLOCKING_TIMEOUT = 30.0  # Time to wait for lock acquisition
INVOICE_LOCK_KEY_PREFIX = "xmrpay:invoice-lock"

# ========================================================================
# EVENTS
# ========================================================================

NOTIFICATION_CHANNEL = "xmrpay:notifications"
SIGNAL_QUEUE_MAXSIZE = 0  # Unbounded
