"""Inscription program constants."""

# Default Metaplex Inscription program ID (mainnet/devnet).
INSCRIPTION_PROGRAM_ID = "1NSCRfGeyo7wPUazGbaPBUsTM49e1k2aXewHGARfzSo"
TOKEN_METADATA_PROGRAM_ID = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

# PDA seed prefixes.
SEED_PREFIX = b"Inscription"
SEED_ASSOCIATION = b"Association"
SEED_SHARD = b"Shard"
SEED_TOKEN_METADATA = b"metadata"

# Bytes per writeData call.
CHUNK_SIZE = 500
# Max account growth per allocate call (runtime MAX_PERMITTED_DATA_INCREASE).
MAX_GROW_INCREMENT = 10_240
SHARD_COUNT = 32
# Key limit of a single getMultipleAccounts request.
MAX_MULTIPLE_ACCOUNTS = 100
MAX_TAG_LEN = 32

# Instruction discriminators (Borsh enum index).
IX_INITIALIZE_FROM_MINT = 1
IX_WRITE_DATA = 3
IX_CREATE_SHARD = 7
IX_INITIALIZE_ASSOCIATED_INSCRIPTION = 8
IX_ALLOCATE = 9

# Account keys.
KEY_INSCRIPTION_METADATA = 1
KEY_MINT_INSCRIPTION_METADATA = 2
KEY_INSCRIPTION_SHARD = 3

DEFAULT_CONCURRENCY = 2
DEFAULT_COMMITMENT = "confirmed"
DEFAULT_CACHE_DIR = "cache"
IMAGE_TAG = "image"

INSCRIPTION_GATEWAY = "https://igw.metaplex.com/"

CLUSTER_URLS: dict[str, str] = {
    "localnet": "http://127.0.0.1:8899",
    "devnet": "https://api.devnet.solana.com",
    "mainnet": "https://api.mainnet-beta.solana.com",
}

MEDIA_FILE_TYPES = {"image/png", "image/jpeg", "image/gif"}
