"""
Audit anchoring constants.
"""

# Placeholder anchor references, derived from the leading hex of the merkle root
PENDING_REFERENCE_PREFIX = "pending-"
REDUNDANT_REFERENCE_PREFIX = "redundant-"
PLACEHOLDER_DIGEST_CHARS = 16

# Ledger transaction references are 256-bit hashes in hex
REFERENCE_HEX_LENGTH = 64

# Memo attached to every anchoring request
ANCHOR_MEMO = "audit-batch"

# Upper bound on rows returned by reporting queries
MAX_LIST_LIMIT = 500
