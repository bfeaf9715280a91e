"""
Static configuration for identity derivation and the membership store.

Runtime values (keys, secrets, directories) are resolved in ``settings.py``;
this module only holds protocol constants that must never change silently,
because changing any of them changes every derived identity or makes
persisted state unreadable.
"""

# ============================================================================
# FIELD PARAMETERS
# ============================================================================

# Commitments and Merkle nodes are elements of the BN254 scalar field, the
# field Semaphore-style membership circuits are defined over.
FIELD_MODULUS = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
FIELD_BITS = 254

# Value of an unoccupied leaf. Zero is therefore never a valid commitment.
EMPTY_LEAF = 0

# ============================================================================
# HASH FUNCTIONS
# ============================================================================

HASH_FUNCTION = "SHA3-256"
HASH_OUTPUT_BITS = 256

DOMAIN_SEPARATOR_PREFIX = b"ZK_IDENTITY_VAULT_V1_"

DOMAIN_SEPARATORS = {
    "identity_commitment": DOMAIN_SEPARATOR_PREFIX + b"COMMITMENT",
    "identity_salt": DOMAIN_SEPARATOR_PREFIX + b"SALT",
    "merkle_node": DOMAIN_SEPARATOR_PREFIX + b"MERKLE_NODE",
}

# ============================================================================
# KEY DERIVATION
# ============================================================================

PRIVATE_SCALAR_BYTES = 32

# Bumping the label is the only sanctioned way to rotate every identity.
DEFAULT_CONTEXT_LABEL = "identity-v3"

# ============================================================================
# AUTHENTICATED ENCRYPTION
# ============================================================================

ALGORITHM_AES_GCM = "aes-256-gcm"
ALGORITHM_XCHACHA = "xchacha20-poly1305"
DEFAULT_ALGORITHM = ALGORITHM_AES_GCM

KEY_SIZE_BYTES = 32
TAG_SIZE_BYTES = 16
NONCE_SIZE_BYTES = {
    ALGORITHM_AES_GCM: 12,
    ALGORITHM_XCHACHA: 24,
}

SUPPORTED_ALGORITHMS = tuple(NONCE_SIZE_BYTES)

# ============================================================================
# MEMBERSHIP GROUP
# ============================================================================

DEFAULT_GROUP_ID = 1
DEFAULT_TREE_DEPTH = 20
MIN_TREE_DEPTH = 1
MAX_TREE_DEPTH = 32

# Commitments longer than this are rejected before parsing.
MAX_COMMITMENT_DIGITS = 100

DEFAULT_CACHE_TTL_SECONDS = 5 * 60

# ============================================================================
# STORAGE LAYOUT
# ============================================================================

DEFAULT_DATA_DIR = "data"
PRIMARY_FILE_NAME = "group.encrypted"
BACKUP_FILE_NAME = "group.backup.encrypted"
LEGACY_FILE_NAME = "group.json"
PREMIGRATION_SUFFIX = ".premigration-"
QUARANTINE_SUFFIX = ".corrupt-"
AUDIT_FILE_NAME = "identity-audit.jsonl"

ENCRYPTED_FIELDS_KEY = "_encryptedFieldNames"
STATE_FORMAT_VERSION = 2

# ============================================================================
# VALIDATION
# ============================================================================


def validate_config() -> bool:
    """
    Validate configuration parameters.

    Returns:
        True if configuration is valid

    Raises:
        AssertionError: If configuration is invalid
    """
    assert FIELD_MODULUS.bit_length() == FIELD_BITS, "Field size mismatch"
    assert HASH_OUTPUT_BITS > FIELD_BITS, "Hash output must exceed field size"
    assert HASH_FUNCTION in ["SHA3-256", "SHA256"], "Invalid hash function"
    assert KEY_SIZE_BYTES == 32, "Both AEAD constructions need 256-bit keys"
    assert DEFAULT_ALGORITHM in SUPPORTED_ALGORITHMS, "Unknown default algorithm"
    assert MIN_TREE_DEPTH <= DEFAULT_TREE_DEPTH <= MAX_TREE_DEPTH, "Bad depth"
    assert PRIVATE_SCALAR_BYTES == 32, "Private scalar must be 32 bytes"

    separators = list(DOMAIN_SEPARATORS.values())
    assert len(separators) == len(set(separators)), "Separators must be unique"

    return True


# Auto-validate on import
validate_config()
