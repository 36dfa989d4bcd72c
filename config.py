"""
Application Configuration
"""
import os


def _env_flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# ============================
# Service endpoints
# ============================
SCORE_API_URL = os.getenv('SCORE_API_URL', 'http://localhost:5000')
SCORE_API_TIMEOUT = float(os.getenv('SCORE_API_TIMEOUT', 15))
SPEECH_API_URL = os.getenv('SPEECH_API_URL')
SPEECH_API_KEY = os.getenv('SPEECH_API_KEY')

# Question generation
GEMINI_API_KEY = os.getenv('GEMINI_API_KEY')
GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-1.5-flash')

# ============================
# Chain settings (Base mainnet)
# ============================
BASE_RPC_URL = os.getenv('BASE_RPC_URL', 'https://mainnet.base.org')
CHAIN_ID = int(os.getenv('CHAIN_ID', 8453))
REWARD_CONTRACT_ADDRESS = os.getenv('REWARD_CONTRACT_ADDRESS')
EXPLORER_TX_URL = os.getenv('EXPLORER_TX_URL', 'https://basescan.org/tx/')

# ============================
# Quiz rules
# ============================
COOLDOWN_HOURS = int(os.getenv('COOLDOWN_HOURS', 24))
QUICK_QUESTION_COUNT = 10
QUICK_MODE_CLAIMS_ENABLED = _env_flag('QUICK_MODE_CLAIMS_ENABLED', True)

# 1x multiplier: the contract divides the percentage by this denominator
REWARD_DENOMINATOR = 100
CLAIM_ERROR_MAX_LENGTH = 100

DIFFICULTY_CONFIG = {
    'beginner': {
        'id': 0,
        'question_count': 20,
        'pass_percentage': 70,
        'topic': 'Blockchain Fundamentals & Basic Trading',
        'description': 'Start your journey. Basic concepts and syntax.',
    },
    'intermediate': {
        'id': 1,
        'question_count': 25,
        'pass_percentage': 75,
        'topic': 'Smart Contracts, DeFi Protocols & NFTs',
        'description': 'Build on your knowledge. Common patterns and practices.',
    },
    'advanced': {
        'id': 2,
        'question_count': 30,
        'pass_percentage': 80,
        'topic': 'Solidity, Cross-chain concepts, MEV, and Protocol Governance',
        'description': 'Tackle complex topics. Advanced mechanics and optimization.',
    },
    'expert': {
        'id': 3,
        'question_count': 25,
        'pass_percentage': 85,
        'topic': 'Advanced Smart Contract Security, Yield Farming, and Flash Loans',
        'description': 'Push your limits. In-depth, niche topics.',
    },
    'master': {
        'id': 4,
        'question_count': 20,
        'pass_percentage': 90,
        'topic': 'Advanced Cryptography, Protocol Research, and Layer 2 Scaling',
        'description': 'For the true masters. The ultimate challenge.',
    },
}

# ============================
# Flask
# ============================
SECRET_KEY = os.getenv('SECRET_KEY', 'your-secret-key-here')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


def get_explorer_url(tx_hash):
    """Block explorer link for a transaction hash"""
    return f"{EXPLORER_TX_URL}{tx_hash}"
